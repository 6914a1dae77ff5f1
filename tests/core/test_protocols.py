"""The in-memory store, the HTTP adapter and the test fakes satisfy the collaborator contracts."""

import pytest

from _support import fakes
from converge.adapters.http import HttpManifestFetcher
from converge.core import protocols
from converge.store.memory import InMemoryStore


@pytest.mark.parametrize("impl,protocol", [
    (InMemoryStore(), protocols.ResourceStore),
    (fakes.FakeMaterializer(), protocols.SecretMaterializer),
    (fakes.FakeJobRunner(), protocols.JobRunner),
    (fakes.FakeWorkloads(), protocols.WorkloadManager),
    (fakes.FakeAttachments(), protocols.NetworkAttachmentValidator),
    (fakes.FakeRbac(), protocols.RbacProvisioner),
    (fakes.FakeTransport(), protocols.TransportProvisioner),
    (fakes.FakeNetworks(), protocols.NetworkProvisioner),
    (fakes.FakeAssets(), protocols.AssetImporter),
    (fakes.FakeFetcher(), protocols.ManifestFetcher),
    (fakes.FakeSshAccess(), protocols.SshAccessProvisioner),
])
def test_satisfies_protocol(impl, protocol):
    assert isinstance(impl, protocol)


def test_http_fetcher_is_a_manifest_fetcher():
    fetcher = HttpManifestFetcher()
    try:
        assert isinstance(fetcher, protocols.ManifestFetcher)
    finally:
        fetcher.close()
