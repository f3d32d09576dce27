"""Tests for the pipeline stages, run one at a time against a shared run_context."""

from __future__ import annotations

import io
import tarfile
from pathlib import Path
from typing import Any, ClassVar

import pytest

from shipwright.core.archive import build_archive
from shipwright.core.cache_rotator import CacheRotator
from shipwright.core.errors import (
    ArtifactMissingError,
    CompileError,
    DependencyResolutionError,
    RegistryPushError,
    TagCollisionError,
)
from shipwright.core.hasher import canonical_json_bytes, digest_bytes
from shipwright.core.tagging import TagGenerator
from shipwright.models.cache import CacheNamespace, DependencyCacheLayer, LayerSource
from shipwright.models.config import PipelineConfig
from shipwright.models.context import BuildContext, TriggerContext
from shipwright.models.image import (
    LABEL_DEPENDENCY_CACHE,
    LABEL_DEPENDENCY_KEY,
    LABEL_REVISION,
    ImageConfig,
    ImageManifest,
)
from shipwright.models.phases import PipelinePhase
from shipwright.registry.filesystem import FilesystemRegistry
from shipwright.stages import (
    STAGE_ORDER,
    BaseStage,
    CacheRotateStage,
    DependencyPrebuildStage,
    ImageAssembleStage,
    PublishStage,
    SourceBuildStage,
    TagStage,
    build_stages,
)


@pytest.fixture
def run_context(config, toolchain, installer, registry, clock) -> dict[str, Any]:
    rotator = CacheRotator(config.cache_paths)
    rotator.restore("abc1234")
    return {
        "run_id": "sw-test-run-001",
        "revision": "abc1234",
        "repository": "Org/Repo",
        "namespace": "org/repo",
        "trigger": TriggerContext(revision="abc1234", repository="Org/Repo"),
        "config": config,
        "toolchain": toolchain,
        "installer": installer,
        "registry": registry,
        "rotator": rotator,
        "tag_generator": TagGenerator(),
        "clock": clock,
        "active_cache": rotator.active_cache(),
        "staging_cache": rotator.begin(),
        "stage_results": {},
    }


def _run_through(run_context: dict[str, Any], last: type[BaseStage]) -> None:
    for cls in STAGE_ORDER:
        cls().run_stage(run_context)
        if cls is last:
            return


def _layer_names(blob: bytes) -> list[str]:
    with tarfile.open(fileobj=io.BytesIO(blob)) as tar:
        return tar.getnames()


def _next_run_context(run_context: dict[str, Any]) -> dict[str, Any]:
    """Finish the current run's cache and set up a fresh context on top of it."""
    rotator: CacheRotator = run_context["rotator"]
    run_context["staging_cache"].seal_store()
    rotator.promote()
    rotator.restore("def5678")
    fresh = dict(run_context)
    fresh.update(
        active_cache=rotator.active_cache(),
        staging_cache=rotator.begin(),
        stage_results={},
    )
    return fresh


class TestStageOrder:
    def test_order(self):
        assert [s.phase for s in build_stages()] == [
            PipelinePhase.DEP_BUILD,
            PipelinePhase.SRC_BUILD,
            PipelinePhase.ASSEMBLE,
            PipelinePhase.TAG,
            PipelinePhase.PUBLISH,
            PipelinePhase.ROTATE_CACHE,
        ]


class _Exploding(BaseStage):
    failure_error: ClassVar = CompileError

    def __init__(self, exc: Exception) -> None:
        self._exc = exc

    @property
    def phase(self) -> PipelinePhase:
        return PipelinePhase.SRC_BUILD

    @property
    def display_name(self) -> str:
        return "Exploding"

    def execute(self, run_context: dict[str, Any]) -> dict[str, Any]:
        raise self._exc


class TestBaseStage:
    def test_unexpected_errors_are_wrapped(self):
        with pytest.raises(CompileError) as info:
            _Exploding(KeyError("x")).run_stage({})
        assert isinstance(info.value.__cause__, KeyError)

    def test_pipeline_errors_propagate_unchanged(self):
        with pytest.raises(ArtifactMissingError):
            _Exploding(ArtifactMissingError("gone")).run_stage({})

    def test_result_carries_hashes(self, run_context):
        result = DependencyPrebuildStage().run_stage(run_context)
        assert len(result["_input_hash"]) == 64
        assert len(result["_output_hash"]) == 64
        assert run_context["stage_results"]["dep_build"] is result


class TestDependencyPrebuild:
    def test_cold_build_sees_only_manifests(self, run_context, toolchain):
        result = DependencyPrebuildStage().run_stage(run_context)
        assert result["source"] == "built"
        assert toolchain.dependency_builds == [
            {"files": ["Cargo.lock", "Cargo.toml"], "profile": "release"}
        ]
        layer: DependencyCacheLayer = run_context["dependency_layer"]
        assert layer.is_valid_for(run_context["build_context"])
        assert run_context["staging_cache"].lookup(CacheNamespace.DEPENDENCIES, layer.key) is not None

    def test_missing_manifest(self, run_context, project: Path):
        (project / "Cargo.lock").unlink()
        with pytest.raises(DependencyResolutionError):
            DependencyPrebuildStage().run_stage(run_context)

    def test_failed_build_leaves_no_entry(self, run_context, toolchain):
        toolchain.fail_dependencies = True
        with pytest.raises(DependencyResolutionError):
            DependencyPrebuildStage().run_stage(run_context)
        assert run_context["staging_cache"].entries() == []

    def test_local_cache_reused_after_source_edit(self, run_context, toolchain, project: Path):
        DependencyPrebuildStage().run_stage(run_context)
        nxt = _next_run_context(run_context)
        (project / "src" / "main.rs").write_text("fn main() { /* edited */ }\n", encoding="utf-8")
        result = DependencyPrebuildStage().run_stage(nxt)
        assert result["source"] == "local"
        assert len(toolchain.dependency_builds) == 1

    def test_lockfile_change_rebuilds(self, run_context, toolchain, project: Path):
        DependencyPrebuildStage().run_stage(run_context)
        nxt = _next_run_context(run_context)
        (project / "Cargo.lock").write_text("version = 3\n# bumped\n", encoding="utf-8")
        result = DependencyPrebuildStage().run_stage(nxt)
        assert result["source"] == "built"
        assert len(toolchain.dependency_builds) == 2

    def test_registry_hint(self, run_context, toolchain, registry: FilesystemRegistry, project: Path, tmp_path: Path):
        context = BuildContext.from_directory(project)
        layer_dir = tmp_path / "remote-deps" / "release" / "deps"
        layer_dir.mkdir(parents=True)
        (layer_dir / "libserde.rlib").write_bytes(b"remote rlib")
        cache_blob = build_archive(tmp_path / "remote-deps")
        image_config = ImageConfig(
            base_image="debian:bullseye-slim",
            entrypoint=["/usr/local/bin/exloli"],
            labels={
                LABEL_DEPENDENCY_KEY: context.manifest_hash,
                LABEL_DEPENDENCY_CACHE: digest_bytes(cache_blob),
            },
        )
        manifest = ImageManifest(config=image_config, config_digest=image_config.digest, layers=[])
        registry.push(
            "org/repo",
            manifest,
            {
                image_config.digest: canonical_json_bytes(image_config.model_dump(mode="json")),
                digest_bytes(cache_blob): cache_blob,
            },
            ["latest"],
        )

        result = DependencyPrebuildStage().run_stage(run_context)
        assert result["source"] == "registry"
        assert toolchain.dependency_builds == []
        entry = run_context["staging_cache"].lookup(CacheNamespace.DEPENDENCIES, context.manifest_hash)
        assert (entry / "release" / "deps" / "libserde.rlib").read_bytes() == b"remote rlib"

    def test_registry_hint_for_other_manifest_ignored(self, run_context, toolchain, registry: FilesystemRegistry):
        image_config = ImageConfig(
            base_image="debian:bullseye-slim",
            entrypoint=["/usr/local/bin/exloli"],
            labels={LABEL_DEPENDENCY_KEY: "0" * 64, LABEL_DEPENDENCY_CACHE: digest_bytes(b"")},
        )
        manifest = ImageManifest(config=image_config, config_digest=image_config.digest, layers=[])
        registry.push(
            "org/repo",
            manifest,
            {image_config.digest: canonical_json_bytes(image_config.model_dump(mode="json"))},
            ["latest"],
        )
        assert DependencyPrebuildStage().run_stage(run_context)["source"] == "built"

    def test_unreadable_registry_cache_falls_back_to_build(
        self, run_context, toolchain, registry: FilesystemRegistry, project: Path
    ):
        context = BuildContext.from_directory(project)
        garbage = b"not a tar archive"
        image_config = ImageConfig(
            base_image="debian:bullseye-slim",
            entrypoint=["/usr/local/bin/exloli"],
            labels={
                LABEL_DEPENDENCY_KEY: context.manifest_hash,
                LABEL_DEPENDENCY_CACHE: digest_bytes(garbage),
            },
        )
        manifest = ImageManifest(config=image_config, config_digest=image_config.digest, layers=[])
        registry.push(
            "org/repo",
            manifest,
            {
                image_config.digest: canonical_json_bytes(image_config.model_dump(mode="json")),
                digest_bytes(garbage): garbage,
            },
            ["latest"],
        )

        result = DependencyPrebuildStage().run_stage(run_context)
        assert result["source"] == "built"
        assert len(toolchain.dependency_builds) == 1


class TestSourceBuild:
    def test_compile_seeds_dependencies(self, run_context, toolchain, config: PipelineConfig):
        _run_through(run_context, SourceBuildStage)
        assert toolchain.binary_builds[0]["seeded"] is True
        artifact = run_context["artifact"]
        assert artifact.path == config.artifact_path
        assert artifact.path.read_bytes().startswith(b"ELF:")
        assert artifact.digest.startswith("sha256:")
        assert not artifact.from_compile_cache

    def test_unchanged_source_hits_compile_cache(self, run_context, toolchain):
        _run_through(run_context, SourceBuildStage)
        first = run_context["artifact"]
        nxt = _next_run_context(run_context)
        _run_through(nxt, SourceBuildStage)
        assert len(toolchain.binary_builds) == 1
        assert nxt["artifact"].from_compile_cache
        assert nxt["artifact"].digest == first.digest

    def test_source_edit_recompiles(self, run_context, toolchain, project: Path):
        _run_through(run_context, SourceBuildStage)
        nxt = _next_run_context(run_context)
        (project / "src" / "main.rs").write_text('fn main() { println!("v2"); }\n', encoding="utf-8")
        _run_through(nxt, SourceBuildStage)
        assert len(toolchain.binary_builds) == 2
        assert toolchain.binary_builds[1]["seeded"] is True
        assert len(toolchain.dependency_builds) == 1

    def test_build_flags_change_fingerprint(self, run_context, toolchain, config: PipelineConfig):
        _run_through(run_context, SourceBuildStage)
        nxt = _next_run_context(run_context)
        nxt["config"] = config.model_copy(update={"build_flags": ("--features", "tls")})
        _run_through(nxt, SourceBuildStage)
        assert len(toolchain.binary_builds) == 2
        assert toolchain.binary_builds[1]["flags"] == ["--features", "tls"]

    def test_stale_layer_not_seeded(self, run_context, toolchain):
        DependencyPrebuildStage().run_stage(run_context)
        layer: DependencyCacheLayer = run_context["dependency_layer"]
        run_context["dependency_layer"] = layer.model_copy(update={"key": "0" * 64})
        SourceBuildStage().run_stage(run_context)
        assert toolchain.binary_builds[0]["seeded"] is False

    def test_compile_error(self, run_context, project: Path, config: PipelineConfig):
        (project / "src" / "main.rs").write_text('compile_error!("nope");\n', encoding="utf-8")
        with pytest.raises(CompileError):
            _run_through(run_context, SourceBuildStage)
        assert not config.artifact_path.exists()

    def test_missing_output(self, run_context, toolchain):
        toolchain.produce_no_binary = True
        with pytest.raises(ArtifactMissingError):
            _run_through(run_context, SourceBuildStage)


class TestImageAssemble:
    def test_two_layer_image(self, run_context, installer, config: PipelineConfig):
        _run_through(run_context, ImageAssembleStage)
        manifest: ImageManifest = run_context["image_manifest"]
        blobs: dict[str, bytes] = run_context["image_blobs"]
        assert [layer.role for layer in manifest.layers] == ["runtime", "artifact"]
        assert installer.installs == [list(config.runtime_packages)]
        assert set(manifest.blob_digests) <= set(blobs)
        for digest, data in blobs.items():
            assert digest_bytes(data) == digest

    def test_runtime_layer_contents(self, run_context):
        _run_through(run_context, ImageAssembleStage)
        manifest: ImageManifest = run_context["image_manifest"]
        names = _layer_names(run_context["image_blobs"][manifest.layers[0].digest])
        assert "etc/ssl/openssl.cnf" in names
        assert "usr/lib/libssl1.1.so" in names
        assert not any(n.startswith(("var/lib/apt/lists", "usr/share/doc")) for n in names)
        assert not any("Cargo" in n or n.endswith(".rs") for n in names)

    def test_artifact_layer_and_entrypoint(self, run_context):
        _run_through(run_context, ImageAssembleStage)
        manifest: ImageManifest = run_context["image_manifest"]
        names = _layer_names(run_context["image_blobs"][manifest.layers[1].digest])
        assert "usr/local/bin/exloli" in names
        assert manifest.config.entrypoint == ["/usr/local/bin/exloli"]
        assert manifest.config.env == {"RUST_BACKTRACE": "full"}

    def test_labels_carry_cache_hint(self, run_context):
        _run_through(run_context, ImageAssembleStage)
        labels = run_context["image_manifest"].config.labels
        assert labels[LABEL_REVISION] == "abc1234"
        assert labels[LABEL_DEPENDENCY_KEY] == run_context["build_context"].manifest_hash
        assert labels[LABEL_DEPENDENCY_CACHE] in run_context["image_blobs"]

    def test_no_cache_export(self, run_context, config: PipelineConfig):
        run_context["config"] = config.model_copy(update={"export_registry_cache": False})
        _run_through(run_context, ImageAssembleStage)
        assert LABEL_DEPENDENCY_CACHE not in run_context["image_manifest"].config.labels

    def test_missing_artifact(self, run_context):
        with pytest.raises(ArtifactMissingError):
            ImageAssembleStage().run_stage(run_context)

    def test_artifact_changed_after_build(self, run_context):
        _run_through(run_context, SourceBuildStage)
        run_context["artifact"].path.write_bytes(b"swapped")
        with pytest.raises(ArtifactMissingError):
            ImageAssembleStage().run_stage(run_context)


class TestTagAndPublish:
    def test_tag_set(self, run_context):
        _run_through(run_context, TagStage)
        assert run_context["tag_set"].tags == ("latest", "20240301100000", "abc1234")

    def test_collision_with_other_revision(self, run_context, registry: FilesystemRegistry):
        _run_through(run_context, ImageAssembleStage)
        registry.push(
            "org/repo",
            run_context["image_manifest"],
            run_context["image_blobs"],
            ["abc1234"],
            revision=("abc1234", "abc1234999999"),
        )
        with pytest.raises(TagCollisionError):
            TagStage().run_stage(run_context)

    def test_publish(self, run_context, registry: FilesystemRegistry):
        _run_through(run_context, PublishStage)
        digest = run_context["push_result"].manifest_digest
        assert registry.tags("org/repo") == {
            "latest": digest,
            "20240301100000": digest,
            "abc1234": digest,
        }
        assert registry.revision_for("org/repo", "abc1234") == "abc1234"

    def test_publish_rejected_credential(self, run_context, tmp_path: Path):
        run_context["registry"] = FilesystemRegistry(tmp_path / "private", token="t0ken")
        with pytest.raises(RegistryPushError):
            _run_through(run_context, PublishStage)
        assert run_context["registry"].tags("org/repo") == {}


class TestCacheRotate:
    def test_promotes_staging(self, run_context, config: PipelineConfig):
        _run_through(run_context, CacheRotateStage)
        rotator: CacheRotator = run_context["rotator"]
        active = rotator.active_cache()
        assert active is not None
        assert len(active.entries()) == 2
        assert not config.cache_paths.staging.exists()
        assert run_context["stage_results"]["rotate_cache"]["persisted_key"] is None
