"""Unit tests for the rbd-mirror plan."""

import pytest

from cephplan.errors import ValidationError
from cephplan.mirror import RBD_MIRROR_CLASS, MirrorPlanBuilder, MirrorSpec


class TestMirrorSpec:
    """Tests for MirrorSpec."""

    def test_defaults(self):
        """Test that an empty spec is valid."""
        assert MirrorSpec.from_dict(None) == MirrorSpec()

    def test_unknown_keys(self):
        """Test that unknown settings are rejected."""
        with pytest.raises(ValidationError):
            MirrorSpec.from_dict({"count": 3})

    def test_memory_minimum(self):
        """Test that rbd-mirror needs at least 512Mi."""
        with pytest.raises(ValidationError):
            MirrorSpec.from_dict({"resources": {"limits": {"memory": "256Mi"}}})
        MirrorSpec.from_dict({"resources": {"limits": {"memory": "512Mi"}}})


class TestMirrorPlanBuilder:
    """Tests for MirrorPlanBuilder."""

    def test_canonical_instance(self, planner_config):
        """Test that the plan is the ordinal 0 instance."""
        plan = MirrorPlanBuilder(planner_config).build(MirrorSpec())
        assert plan.identity == "a"
        assert plan.name == "rook-ceph-rbd-mirror-a"
        assert plan.selector == {
            "app": "rook-ceph-rbd-mirror",
            "rook_cluster": "rook-ceph",
            "rbd-mirror": "a",
        }
        assert plan.labels[RBD_MIRROR_CLASS.instance_label] == "a"

    def test_daemon(self, planner_config):
        """Test the daemon container."""
        plan = MirrorPlanBuilder(planner_config).build(MirrorSpec())
        assert plan.step_names() == ["chown-container-data-dirs"]
        assert plan.daemon.name == "rbd-mirror"
        assert plan.daemon.command == ("rbd-mirror",)
        args = plan.daemon.args
        assert args[args.index("--name") + 1] == "client.rbd-mirror.a"
        assert args[args.index("--fsid") + 1] == planner_config.fsid
        assert plan.volume("keyring") == {
            "name": "keyring",
            "secret": {"secretName": "rook-ceph-rbd-mirror-a-keyring"},
        }

    def test_spec_settings(self, planner_config):
        """Test that labels, annotations and priority class are applied."""
        spec = MirrorSpec.from_dict(
            {
                "labels": {"team": "storage"},
                "annotations": {"example.com/owner": "ops"},
                "priority_class_name": "system-cluster-critical",
                "resources": {"limits": {"memory": "1Gi"}},
            }
        )
        plan = MirrorPlanBuilder(planner_config).build(spec)
        deployment = plan.to_deployment()
        assert deployment["metadata"]["labels"]["team"] == "storage"
        assert deployment["metadata"]["annotations"]["example.com/owner"] == "ops"
        pod = deployment["spec"]["template"]["spec"]
        assert pod["priorityClassName"] == "system-cluster-critical"
        assert pod["containers"][0]["resources"] == {"limits": {"memory": "1Gi"}}

    def test_spec_labels_cannot_override_selector(self, planner_config):
        """Test that user labels never change the selector labels."""
        spec = MirrorSpec(labels={"app": "other", "rbd-mirror": "b"})
        plan = MirrorPlanBuilder(planner_config).build(spec)
        assert plan.labels["app"] == "rook-ceph-rbd-mirror"
        assert plan.labels["rbd-mirror"] == "a"

    def test_class(self):
        """Test the singleton class used for cleanup."""
        assert RBD_MIRROR_CLASS.singleton
        assert RBD_MIRROR_CLASS.label_selector == "app=rook-ceph-rbd-mirror"
        assert RBD_MIRROR_CLASS.credential_entity("b") == "client.rbd-mirror.b"
