import re
from pathlib import Path
from types import SimpleNamespace

from typer.testing import CliRunner

from snapchef.cli import app
from snapchef.config import Settings
from snapchef.models import Ingredient, PageResult, VisionResult
from snapchef.pager import paginate


def _strip_ansi(text: str) -> str:
    return re.sub(r"\x1b\[[0-9;]*[mK]", "", text)


class FakeVision:
    def __init__(self, result: VisionResult) -> None:
        self.result = result
        self.paths: list[Path] = []

    async def analyze(self, path):
        self.paths.append(Path(path))
        return self.result


class FakePager:
    def __init__(self, result: PageResult) -> None:
        self.result = result
        self.requests: list[dict] = []

    async def get_page(self, ingredients, **kwargs):
        self.requests.append({"ingredients": list(ingredients), **kwargs})
        return self.result


def _install(monkeypatch, tmp_path: Path, *, vision=None, pager=None) -> dict:
    built = {}

    async def aclose():
        built["closed"] = True

    def fake_build_services(settings, *, offline=False):
        built["offline"] = offline
        return SimpleNamespace(vision=vision, pager=pager, aclose=aclose)

    monkeypatch.setattr(
        "snapchef.cli.get_settings", lambda cache_dir=None: Settings(api_key="k", cache_dir=tmp_path)
    )
    monkeypatch.setattr("snapchef.cli.build_services", fake_build_services)
    return built


def test_scan_success(monkeypatch, tmp_path: Path, write_image) -> None:
    vision = FakeVision(
        VisionResult.succeeded(
            [Ingredient(name="tomato", confidence=0.92, category="vegetable")], 0.9, 15
        )
    )
    built = _install(monkeypatch, tmp_path, vision=vision)
    image = write_image("meal.png")

    result = CliRunner().invoke(app, ["scan", str(image)])

    assert result.exit_code == 0
    output = _strip_ansi(result.stdout)
    assert "Detected ingredients" in output
    assert "tomato" in output
    assert "0.92" in output
    assert vision.paths == [image]
    assert built == {"offline": False, "closed": True}


def test_scan_offline_flag_and_remote_failure(monkeypatch, tmp_path: Path, write_image) -> None:
    vision = FakeVision(VisionResult.failed("No internet connection.", "network.no-connection"))
    built = _install(monkeypatch, tmp_path, vision=vision)

    result = CliRunner().invoke(app, ["--offline", "scan", str(write_image())])

    assert result.exit_code == 2
    assert "No internet connection." in _strip_ansi(result.stdout)
    assert built["offline"] is True


def test_scan_invalid_image_exit_code(monkeypatch, tmp_path: Path, write_image) -> None:
    vision = FakeVision(VisionResult.failed("Invalid image format.", "processing.invalid-image"))
    _install(monkeypatch, tmp_path, vision=vision)

    result = CliRunner().invoke(app, ["scan", str(write_image())])

    assert result.exit_code == 1


def test_scan_missing_file(tmp_path: Path) -> None:
    result = CliRunner().invoke(app, ["scan", str(tmp_path / "missing.jpg")])
    assert result.exit_code == 1
    assert "Input error" in _strip_ansi(result.stdout)


def test_scan_unsupported_extension(tmp_path: Path) -> None:
    path = tmp_path / "notes.txt"
    path.write_text("hello")
    result = CliRunner().invoke(app, ["scan", str(path)])
    assert result.exit_code == 1
    assert "Unsupported image format" in _strip_ansi(result.stdout)


def test_scan_requires_api_key(monkeypatch, tmp_path: Path, write_image) -> None:
    monkeypatch.delenv("LLM_API_KEY", raising=False)
    monkeypatch.setattr("snapchef.config._ENV_LOADED", True)
    result = CliRunner().invoke(
        app, ["--cache-dir", str(tmp_path / "cache"), "scan", str(write_image())]
    )
    assert result.exit_code == 1
    assert "Configuration error" in _strip_ansi(result.stdout)


def test_recipes_page(monkeypatch, tmp_path: Path, make_recipe) -> None:
    recipes = [make_recipe(f"r{i}", match=90 - i) for i in range(12)]
    pager = FakePager(PageResult(view=paginate(recipes, 2, 5), from_cache=True))
    _install(monkeypatch, tmp_path, pager=pager)

    result = CliRunner().invoke(
        app,
        [
            "recipes",
            "rice",
            "egg",
            "--page",
            "2",
            "--page-size",
            "5",
            "--sort",
            "time",
            "--filter",
            "vegan",
            "--filter",
            "nut-free",
        ],
    )

    assert result.exit_code == 0
    output = _strip_ansi(result.stdout)
    assert "Recipe r5" in output
    assert "Page 2 of 3" in output
    assert pager.requests == [
        {
            "ingredients": ["rice", "egg"],
            "page": 2,
            "page_size": 5,
            "sort_by": "time",
            "filters": ["vegan", "nut-free"],
        }
    ]


def test_recipes_failure(monkeypatch, tmp_path: Path) -> None:
    pager = FakePager(PageResult.failed("Server error occurred.", "network.server-error"))
    _install(monkeypatch, tmp_path, pager=pager)

    result = CliRunner().invoke(app, ["recipes", "rice"])

    assert result.exit_code == 2
    assert "Server error occurred." in _strip_ansi(result.stdout)


def test_cache_stats_and_clear(tmp_path: Path) -> None:
    runner = CliRunner()
    (tmp_path / "recipes").mkdir()
    (tmp_path / "recipes" / "stale.json").write_text("{}")

    stats = runner.invoke(app, ["--cache-dir", str(tmp_path), "cache", "stats"])
    assert stats.exit_code == 0
    output = _strip_ansi(stats.stdout)
    assert "recipe_cache" in output
    assert "vision_cache" in output

    cleared = runner.invoke(app, ["--cache-dir", str(tmp_path), "cache", "clear"])
    assert cleared.exit_code == 0
    assert not (tmp_path / "recipes" / "stale.json").exists()
