"""
test_catalog.py - TemplateCatalog and remote source tests

- Discovery, schema validation, deduplication (local wins)
- Version resolution: latest / exact / range / absent
- Search and installation
"""

import io
import json
import logging
import os
import tarfile
from pathlib import Path

import httpx
import pytest

from scaffoldr.catalog.catalog import TemplateCatalog
from scaffoldr.catalog.loader import DESCRIPTOR_FILENAMES, find_descriptor_file, parse_descriptor
from scaffoldr.catalog.sources import HttpRegistrySource
from scaffoldr.core.cache import TTLCache
from scaffoldr.core.errors import InstallationError, RemoteSourceError
from scaffoldr.core.models import TemplateDescriptor
from scaffoldr.core.schema import JsonSchemaValidator

from .conftest import descriptor_document


# =============================================================================
# Fakes
# =============================================================================

class FakeSource:
    def __init__(self, descriptors=None, error=None, name="remote:fake"):
        self.name = name
        self._descriptors = descriptors or []
        self._error = error
        self.list_calls = 0
        self.downloads = []

    def list_templates(self):
        self.list_calls += 1
        if self._error:
            raise self._error
        return list(self._descriptors)

    def download(self, descriptor, dest: Path):
        self.downloads.append((descriptor.key, dest))
        (dest / "README.md").write_text(f"# {descriptor.name}\n")


class RecordingHookRunner:
    def __init__(self, action=None):
        self.calls = []
        self._action = action

    def run_all(self, commands, cwd, stage, env=None):
        self.calls.append((list(commands), cwd, stage))
        if self._action:
            self._action(cwd)
        return []


def remote_descriptor(source: FakeSource, **fields) -> TemplateDescriptor:
    return TemplateDescriptor.model_validate(
        {**descriptor_document(**fields), "origin": source.name}
    )


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def versioned_dir(templates_dir, make_template) -> Path:
    for version in ("1.0.0", "1.2.0", "2.0.0"):
        make_template(templates_dir / f"x-{version}", name="x", version=version)
    make_template(
        templates_dir / "api",
        name="api",
        version="0.3.0",
        category="backend",
        keywords=["rest", "python"],
        author="alice",
        downloads=50,
        rating=4.5,
    )
    make_template(
        templates_dir / "site",
        name="site",
        version="1.0.0",
        category="frontend",
        keywords=["static"],
        author="bob",
        downloads=500,
        rating=3.0,
        description="Static site",
        descriptor_name="template.yaml",
    )
    return templates_dir


@pytest.fixture
def catalog(versioned_dir, tmp_path) -> TemplateCatalog:
    return TemplateCatalog([versioned_dir], cache_dir=tmp_path / "cache")


# =============================================================================
# Discovery
# =============================================================================

class TestDiscover:
    def test_finds_json_and_yaml_descriptors(self, catalog):
        names = {d.name for d in catalog.discover()}

        assert names == {"x", "api", "site"}

    def test_sorted_by_name_then_newest_version(self, catalog):
        keys = [d.key for d in catalog.discover()]

        assert keys == [
            ("api", "0.3.0"),
            ("site", "1.0.0"),
            ("x", "2.0.0"),
            ("x", "1.2.0"),
            ("x", "1.0.0"),
        ]

    def test_invalid_descriptor_dropped_with_warning(self, templates_dir, caplog):
        bad = templates_dir / "bad"
        bad.mkdir()
        document = descriptor_document(name="bad")
        del document["author"]
        (bad / "template.json").write_text(json.dumps(document))
        (templates_dir / "broken").mkdir()
        (templates_dir / "broken" / "template.json").write_text("{not json")

        with caplog.at_level(logging.WARNING):
            descriptors = TemplateCatalog([templates_dir]).discover()

        assert descriptors == []
        assert "bad" in caplog.text
        assert "broken" in caplog.text

    def test_missing_directory_is_ignored(self, tmp_path):
        assert TemplateCatalog([tmp_path / "nope"]).discover() == []

    def test_source_path_and_origin(self, catalog, versioned_dir):
        descriptor = catalog.get("api")

        assert descriptor.source_path == (versioned_dir / "api").resolve()
        assert descriptor.is_local

    def test_camel_case_fields_parsed(self, templates_dir, make_template):
        make_template(
            templates_dir / "t",
            minEngineVersion=">=0.1.0",
            hooks={"postGenerate": ["echo done"]},
            securityStatus={"status": "passed", "score": 90},
        )

        descriptor = TemplateCatalog([templates_dir]).get("webapp")

        assert descriptor.min_engine_version == ">=0.1.0"
        assert descriptor.hooks.post_generate == ["echo done"]
        assert descriptor.security_status.status == "passed"

    def test_first_discovered_wins_within_local(self, tmp_path, make_template):
        first, second = tmp_path / "one", tmp_path / "two"
        make_template(first / "a", description="first")
        make_template(second / "a", description="second")

        descriptors = TemplateCatalog([first, second]).discover()

        assert len(descriptors) == 1
        assert descriptors[0].description == "first"

    def test_descriptor_parsing_is_cached(self, catalog):
        catalog.discover()
        catalog.discover()

        assert catalog.descriptor_cache.stats().hits == 5

    def test_statistics(self, catalog):
        catalog.discover()

        stats = catalog.statistics()

        assert stats["discoveries"] == 1
        assert stats["descriptor_cache_size"] == 5

    def test_injected_caches_are_kept(self, templates_dir):
        descriptors = TTLCache(60, name="descriptors")
        listings = TTLCache(60, name="listings")

        catalog = TemplateCatalog(
            [templates_dir], descriptor_cache=descriptors, remote_cache=listings
        )

        assert catalog.descriptor_cache is descriptors
        assert catalog.remote_cache is listings

    def test_document_cannot_set_runtime_fields(self, tmp_path):
        document = descriptor_document(sourcePath=str(tmp_path), origin="local")

        descriptor = parse_descriptor(
            document, JsonSchemaValidator(), origin="remote:https://registry.test"
        )

        assert descriptor.source_path is None
        assert descriptor.origin == "remote:https://registry.test"

    def test_changed_descriptor_is_reparsed(self, templates_dir, make_template):
        path = make_template(templates_dir / "t", description="old") / "template.json"
        catalog = TemplateCatalog([templates_dir])
        catalog.discover()

        document = json.loads(path.read_text())
        document["description"] = "new"
        path.write_text(json.dumps(document))
        stat = path.stat()
        os.utime(path, (stat.st_atime, stat.st_mtime + 10))

        assert catalog.get("webapp").description == "new"


class TestRemoteSources:
    def test_local_wins_over_remote(self, templates_dir, make_template):
        make_template(templates_dir / "w", description="local copy")
        source = FakeSource()
        source._descriptors = [
            remote_descriptor(source, description="remote copy"),
            remote_descriptor(source, name="remote-only"),
        ]

        descriptors = TemplateCatalog([templates_dir], [source]).discover()

        by_name = {d.name: d for d in descriptors}
        assert by_name["webapp"].description == "local copy"
        assert by_name["webapp"].origin == "local"
        assert by_name["remote-only"].origin == "remote:fake"

    def test_remote_failure_is_not_fatal(self, catalog):
        catalog.sources = [FakeSource(error=RemoteSourceError("down"))]

        assert len(catalog.discover()) == 5

    def test_remote_listing_cached_until_forced(self, catalog):
        source = FakeSource()
        catalog.sources = [source]

        catalog.discover()
        catalog.discover()
        assert source.list_calls == 1

        catalog.discover(force_refresh=True)
        assert source.list_calls == 2

    def test_include_flags(self, catalog):
        source = FakeSource()
        source._descriptors = [remote_descriptor(source, name="r")]
        catalog.sources = [source]

        assert {d.name for d in catalog.discover(include_local=False)} == {"r"}
        assert "r" not in {d.name for d in catalog.discover(include_remote=False)}


# =============================================================================
# Version resolution
# =============================================================================

class TestGet:
    def test_latest(self, catalog):
        assert catalog.get("x").version == "2.0.0"

    def test_range(self, catalog):
        assert catalog.get("x", "^1.0.0").version == "1.2.0"

    def test_exact(self, catalog):
        assert catalog.get("x", "1.0.0").version == "1.0.0"

    def test_unsatisfied_version_is_absent(self, catalog):
        assert catalog.get("x", "9.9.9") is None

    def test_unknown_name_is_absent(self, catalog):
        assert catalog.get("does-not-exist") is None
        assert catalog.get("does-not-exist", "^1.0.0") is None

    def test_garbage_range_is_absent(self, catalog):
        assert catalog.get("x", "not a range!!") is None


# =============================================================================
# Search
# =============================================================================

class TestSearch:
    def test_query_matches_name_description_and_keywords(self, catalog):
        assert [d.name for d in catalog.search("static").templates] == ["site"]
        assert [d.name for d in catalog.search("rest").templates] == ["api"]

    def test_filters(self, catalog):
        assert [d.name for d in catalog.search(category="backend").templates] == ["api"]
        assert [d.name for d in catalog.search(author="BOB").templates] == ["site"]
        assert [d.name for d in catalog.search(min_rating=4).templates] == ["api"]
        assert [d.name for d in catalog.search(keywords=["python"]).templates] == ["api"]

    def test_sort_and_paginate(self, catalog):
        result = catalog.search(sort_by="downloads", descending=True, limit=2, offset=0)

        assert result.total == 5
        assert [d.name for d in result.templates] == ["site", "api"]

        page = catalog.search(limit=2, offset=4)
        assert len(page.templates) == 1

    def test_unknown_sort_field(self, catalog):
        with pytest.raises(ValueError):
            catalog.search(sort_by="color")


# =============================================================================
# Install
# =============================================================================

class TestInstall:
    def test_copies_local_template(self, templates_dir, make_template, tmp_path):
        make_template(templates_dir / "w", files={"src/main.py": "print('hi')\n"})
        catalog = TemplateCatalog([templates_dir], cache_dir=tmp_path / "cache")

        result = catalog.install("webapp")

        assert result.status == "success"
        assert result.install_path == tmp_path / "cache" / "templates" / "webapp" / "1.0.0"
        assert (result.install_path / "src" / "main.py").read_text() == "print('hi')\n"
        assert find_descriptor_file(result.install_path) is not None

    def test_existing_target_is_idempotent(self, catalog, tmp_path):
        dest = tmp_path / "dest"
        dest.mkdir()

        result = catalog.install("x", dest_path=dest)

        assert result.status == "success"
        assert result.already_installed
        assert list(dest.iterdir()) == []

    def test_unknown_template_fails_without_raising(self, catalog):
        result = catalog.install("missing")

        assert result.status == "failed"
        assert "missing" in result.error

    def test_post_install_hooks_run_in_target(self, templates_dir, make_template, tmp_path):
        make_template(templates_dir / "w", hooks={"postInstall": ["echo installed"]})
        runner = RecordingHookRunner()
        catalog = TemplateCatalog([templates_dir], cache_dir=tmp_path, hook_runner=runner)

        result = catalog.install("webapp")

        assert runner.calls == [(["echo installed"], result.install_path, "post-install")]

    def test_missing_descriptor_after_install_is_fatal(
        self, templates_dir, make_template, tmp_path
    ):
        make_template(templates_dir / "w")

        def remove_descriptor(cwd: Path):
            for name in DESCRIPTOR_FILENAMES:
                (cwd / name).unlink(missing_ok=True)

        catalog = TemplateCatalog(
            [templates_dir],
            cache_dir=tmp_path,
            hook_runner=RecordingHookRunner(action=remove_descriptor),
        )

        with pytest.raises(InstallationError):
            catalog.install("webapp", dest_path=tmp_path / "inst")

        assert not (tmp_path / "inst").exists()
        with pytest.raises(InstallationError):
            catalog.install("webapp", dest_path=tmp_path / "inst")

    def test_remote_install_downloads_files(self, tmp_path):
        source = FakeSource()
        source._descriptors = [remote_descriptor(source, name="remote-app")]
        catalog = TemplateCatalog([], [source], cache_dir=tmp_path)

        result = catalog.install("remote-app")

        assert result.status == "success"
        assert (result.install_path / "README.md").read_text() == "# remote-app\n"
        document = json.loads((result.install_path / "template.json").read_text())
        assert document["name"] == "remote-app"


# =============================================================================
# HttpRegistrySource
# =============================================================================

def _archive(files: dict[str, bytes]) -> bytes:
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as archive:
        for name, data in files.items():
            info = tarfile.TarInfo(name)
            info.size = len(data)
            archive.addfile(info, io.BytesIO(data))
    return buffer.getvalue()


class TestHttpRegistrySource:
    def test_lists_valid_descriptors(self):
        index = {"templates": [descriptor_document(name="a"), {"name": "incomplete"}]}

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/index.json"
            return httpx.Response(200, json=index)

        source = HttpRegistrySource(
            "https://registry.test/", client=httpx.Client(transport=httpx.MockTransport(handler))
        )

        descriptors = source.list_templates()

        assert [d.name for d in descriptors] == ["a"]
        assert descriptors[0].origin == "remote:https://registry.test"
        assert descriptors[0].source_path is None

    def test_retries_server_errors(self):
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) < 3:
                return httpx.Response(503)
            return httpx.Response(200, json=[descriptor_document()])

        source = HttpRegistrySource(
            "https://registry.test",
            retries=3,
            backoff=0,
            client=httpx.Client(transport=httpx.MockTransport(handler)),
        )

        assert len(source.list_templates()) == 1
        assert len(calls) == 3

    def test_gives_up_with_remote_source_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        source = HttpRegistrySource(
            "https://registry.test",
            retries=2,
            backoff=0,
            client=httpx.Client(transport=httpx.MockTransport(handler)),
        )

        with pytest.raises(RemoteSourceError):
            source.list_templates()

    def test_client_errors_are_not_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(404)

        source = HttpRegistrySource(
            "https://registry.test",
            retries=3,
            backoff=0,
            client=httpx.Client(transport=httpx.MockTransport(handler)),
        )

        with pytest.raises(RemoteSourceError):
            source.list_templates()
        assert len(calls) == 1

    def test_download_extracts_archive(self, tmp_path):
        archive = _archive({"src/index.js": b"console.log('hi');\n"})

        def handler(request):
            assert request.url.path == "/a/1.0.0.tar.gz"
            return httpx.Response(200, content=archive)

        source = HttpRegistrySource(
            "https://registry.test", client=httpx.Client(transport=httpx.MockTransport(handler))
        )
        descriptor = TemplateDescriptor.model_validate(descriptor_document(name="a"))

        source.download(descriptor, tmp_path)

        assert (tmp_path / "src" / "index.js").read_bytes() == b"console.log('hi');\n"
