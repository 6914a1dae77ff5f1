"""Transient Asset Pipeline — import external images through a short-lived uploader.

When the declared asset reference changes, the controller runs a small
sub-workflow:

::

    NoOp (ref empty)
      │
    DeployUploader ─► WaitUploaderReady ─► ExposeEndpoint ─► FetchManifest
                                                                  │
    Settled ◄─ TeardownUploader ◄──────────────────────────── ImportAssets

It is gated on its own hash key, so with an unchanged reference the
whole thing is skipped without touching any collaborator. Teardown of the
uploader is best-effort and tracked separately in
``status.asset_teardown_pending``: a failed delete is retried on later
passes even though the hash gate is closed by then.
"""

from __future__ import annotations

from converge.core.conditions import ConditionType, Reason, Severity, messages
from converge.core.errors import ConvergeError, NetworkError
from converge.core.hashing import HashKey, hash_changed, object_hash, recorded_hash, set_hash
from converge.core.logging import get_logger
from converge.core.models import ManifestEntry, Resource, WorkloadSpec
from converge.reconcile.context import PassContext
from converge.reconcile.stage_result import StageResult
from converge.store.upsert import create_or_update, set_controller_reference

logger = get_logger(__name__)

CONDITION = ConditionType.ASSETS_READY
SERVICE_KIND = "Service"


def uploader_name(topology_name: str) -> str:
    return f"{topology_name}-asset-upload"


def parse_manifest(text: str, endpoint: str, suffix: str = ".qcow2") -> list[ManifestEntry]:
    """
    Parse a ``<checksum> <filename>`` listing.

    Lines that do not split into exactly two fields are skipped. The
    asset name is the filename without ``suffix``; the URL is the file
    under ``endpoint``.

    Example:
        >>> parse_manifest("abc123 cirros.qcow2\\nbadline\\n", "http://up:8080")
        [ManifestEntry(name='cirros', url='http://up:8080/cirros.qcow2', checksum='abc123')]
    """
    entries = []
    for line in text.splitlines():
        fields = line.split()
        if len(fields) != 2:
            continue
        checksum, filename = fields
        entries.append(ManifestEntry(
            name=filename.removesuffix(suffix),
            url=f"{endpoint}/{filename}",
            checksum=checksum,
        ))
    return entries


def _mark_waiting(ctx: PassContext) -> None:
    ctx.conditions.mark_false(CONDITION, Reason.REQUESTED, Severity.INFO,
                              messages(CONDITION).waiting)


def _teardown(ctx: PassContext) -> None:
    """Delete the uploader; leave the pending flag set if that fails."""
    name = uploader_name(ctx.name)
    try:
        ctx.collaborators.workloads.delete(name, ctx.namespace)
    except Exception as e:
        logger.warning("assets.teardown_failed", uploader=name, error=str(e))
        return
    ctx.status.asset_teardown_pending = False
    logger.info("assets.teardown_complete", uploader=name)


def expose_endpoint(ctx: PassContext) -> str:
    """Upsert the internal service in front of the uploader; return its base URL."""
    name = uploader_name(ctx.name)
    service_name = f"{name}-internal"
    port = ctx.settings.uploader_port

    def mutate(obj: Resource) -> None:
        obj.spec = {
            "selector": ctx.labels(name),
            "ports": [{"name": name, "port": port, "target_port": port}],
        }
        obj.metadata.labels.update(ctx.labels(name))
        obj.metadata.annotations["endpoint"] = "internal"
        obj.metadata.annotations["ingress_create"] = "false"
        set_controller_reference(ctx.topology, obj)

    create_or_update(ctx.store, SERVICE_KIND, service_name, ctx.namespace, mutate)
    return f"http://{service_name}.{ctx.namespace}.svc:{port}"


def reconcile_assets(ctx: PassContext) -> StageResult:
    """Run the asset sub-workflow as far as it can get this pass."""
    ref = ctx.spec.asset_image
    status = ctx.status

    # NoOp
    if not ref:
        if recorded_hash(status.hash, HashKey.ASSET_UPLOAD):
            set_hash(status.hash, HashKey.ASSET_UPLOAD, "")
        if status.asset_teardown_pending:
            _teardown(ctx)
        ctx.conditions.mark_true(CONDITION, "No asset image configured")
        return StageResult.skip("no asset reference")

    new_hash = object_hash(ref)
    if not hash_changed(status.hash, HashKey.ASSET_UPLOAD, new_hash):
        if status.asset_teardown_pending:
            _teardown(ctx)
        ctx.conditions.mark_true(CONDITION, messages(CONDITION).ready)
        return StageResult.skip("asset reference unchanged")

    # DeployUploader
    name = uploader_name(ctx.name)
    state = ctx.collaborators.workloads.create_or_patch(ctx.topology, WorkloadSpec(
        name=name,
        namespace=ctx.namespace,
        image=ref,
        replicas=1,
        port=ctx.settings.uploader_port,
        labels=ctx.labels(name),
    ))
    if state.requeue_after is not None:
        _mark_waiting(ctx)
        return StageResult.requeue(state.requeue_after, "uploader deployment pending")

    # WaitUploaderReady
    if state.ready_count == 0:
        _mark_waiting(ctx)
        return StageResult.requeue(ctx.settings.uploader_wait_seconds, "uploader not ready")

    # ExposeEndpoint
    endpoint = expose_endpoint(ctx)

    # FetchManifest
    url = f"{endpoint}/{ctx.settings.manifest_filename}"
    try:
        body = ctx.collaborators.fetcher.fetch(url)
    except ConvergeError as e:
        if e.retry_after is None:
            e.retry_after = ctx.settings.manifest_retry_seconds
        e.with_context(url=url)
        return StageResult.fail(e, CONDITION)
    except OSError as e:
        return StageResult.fail(
            NetworkError(f"fetching {url} failed: {e}", cause=e,
                         retry_after=ctx.settings.manifest_retry_seconds).with_context(url=url),
            CONDITION,
        )
    entries = parse_manifest(body, endpoint, ctx.settings.asset_suffix)
    logger.info("assets.manifest", url=url, entries=len(entries))

    # ImportAssets
    if not ctx.collaborators.assets.ensure_imported(ctx.topology, entries):
        _mark_waiting(ctx)
        return StageResult.requeue(ctx.settings.asset_import_wait_seconds, "asset import incomplete")

    set_hash(status.hash, HashKey.ASSET_UPLOAD, new_hash)
    status.asset_teardown_pending = True

    # TeardownUploader
    _teardown(ctx)

    ctx.conditions.mark_true(CONDITION, messages(CONDITION).ready)
    return StageResult.proceed()
