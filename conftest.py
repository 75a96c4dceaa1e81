import pytest

from macaw_proxy.assets import InjectionPayload
from macaw_proxy.utils_tests.upstream_mock import FakeUpstream


@pytest.fixture
def payload():
    """Small recognisable payload for rewrite assertions."""
    return InjectionPayload(
        style_block="<style>.x{}</style>\n",
        script_block="<script>run()</script>\n",
    )


@pytest.fixture
def asset_dir(tmp_path):
    """Asset directory holding a style and a script file."""
    (tmp_path / "custom.css").write_text(".x{}", encoding="utf-8")
    (tmp_path / "custom.js").write_text("run()", encoding="utf-8")
    return tmp_path


@pytest.fixture
def fake_upstream():
    return FakeUpstream()
