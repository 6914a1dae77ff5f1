"""Tests for the deletion cascade."""

from unittest.mock import MagicMock

import pytest

from _support.fakes import make_topology
from converge.core.errors import ConflictError, NotFoundError
from converge.core.models import ObjectMeta, Resource
from converge.reconcile.deletion import (
    ACCOUNT_KIND,
    DATABASE_KIND,
    owned_resources,
    release_finalizer,
    run_cascade,
)
from converge.store.memory import InMemoryStore

FINALIZER = "openstack.org/octavia"
DATABASES = ("octavia", "octavia_persistence")


def _owned(kind, name):
    return Resource(kind=kind, metadata=ObjectMeta(name=name, namespace="openstack",
                                                   finalizers=[FINALIZER, "other.io/keep"]))


@pytest.fixture
def mem() -> InMemoryStore:
    return InMemoryStore()


class TestOwnedResources:
    def test_two_databases_and_two_accounts(self):
        assert owned_resources(make_topology(), DATABASES) == [
            (DATABASE_KIND, "octavia"),
            (ACCOUNT_KIND, "octavia"),
            (DATABASE_KIND, "octavia_persistence"),
            (ACCOUNT_KIND, "octavia-persistence"),
        ]


class TestRunCascade:
    def test_missing_resource_counts_as_released(self, mem):
        """One resource already gone, the rest present: the cascade completes."""
        mem.create(_owned(DATABASE_KIND, "octavia"))
        mem.create(_owned(ACCOUNT_KIND, "octavia"))
        mem.create(_owned(ACCOUNT_KIND, "octavia-persistence"))
        topology = make_topology()
        topology.metadata.add_finalizer(FINALIZER)

        report = run_cascade(mem, topology, FINALIZER, DATABASES)

        assert report.already_gone == [(DATABASE_KIND, "octavia_persistence")]
        assert len(report.released) == 3
        assert not topology.metadata.has_finalizer(FINALIZER)
        for kind, name in report.released:
            assert mem.get(kind, name, "openstack").metadata.finalizers == ["other.io/keep"]

    def test_store_error_keeps_topology_finalizer(self):
        store = MagicMock()
        store.get.side_effect = ConflictError("store unavailable")
        topology = make_topology()
        topology.metadata.add_finalizer(FINALIZER)

        with pytest.raises(ConflictError):
            run_cascade(store, topology, FINALIZER, DATABASES)

        assert topology.metadata.has_finalizer(FINALIZER)


class TestReleaseFinalizer:
    def test_not_found_returns_false(self):
        store = MagicMock()
        store.get.side_effect = NotFoundError(kind=DATABASE_KIND, name="x", namespace="openstack")
        assert release_finalizer(store, DATABASE_KIND, "x", "openstack", FINALIZER) is False

    def test_absent_finalizer_writes_nothing(self, mem):
        mem.create(Resource(kind=DATABASE_KIND, metadata=ObjectMeta(name="x", namespace="openstack")))
        writes = mem.writes
        assert release_finalizer(mem, DATABASE_KIND, "x", "openstack", FINALIZER) is True
        assert mem.writes == writes
