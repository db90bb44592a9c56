import plistlib
from pathlib import Path

import pytest


def make_app(root: Path, name: str = "Google Chrome", version: str = "1.0", bundle_id: str = "com.google.Chrome") -> Path:
    app = root / f"{name}.app"
    contents = app / "Contents"
    contents.mkdir(parents=True)
    info = {"CFBundleName": name}
    if version is not None:
        info["CFBundleShortVersionString"] = version
    if bundle_id is not None:
        info["CFBundleIdentifier"] = bundle_id
    with (contents / "Info.plist").open("wb") as handle:
        plistlib.dump(info, handle)
    return app


@pytest.fixture
def app_factory(tmp_path):
    def factory(**kwargs):
        return make_app(tmp_path, **kwargs)

    return factory
