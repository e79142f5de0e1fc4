from __future__ import annotations

from configparser import ConfigParser
from pathlib import Path

import yaml


class AppConfig:
    def __init__(self, config_path: Path | None = None, prompts_path: Path | None = None) -> None:
        parser = ConfigParser()
        package_root = Path(__file__).resolve().parent.parent
        parser.read(config_path or package_root / "config.ini")
        if not parser.sections() and config_path is None:
            parser.read(Path("config.ini"))
        self._parser = parser
        self._prompts = self._load_prompts(prompts_path or package_root / "prompts.yaml")

    def engine_settings(self) -> dict[str, float]:
        return {
            "poll_interval": self._get_float("engine", "poll_interval", 1.0),
            "task_timeout": self._get_float("engine", "task_timeout", 60.0),
        }

    def llm_defaults(self) -> dict[str, object]:
        llm_prompt = self._prompts.get("llm", {})
        prompt_text = llm_prompt.get("system_prompt") if isinstance(llm_prompt, dict) else None
        return {
            "model": self._get_str("llm", "model", "qwen2.5vl:3b"),
            "base_url": self._get_str("llm", "base_url", "http://127.0.0.1:11434"),
            "temperature": self._get_float("llm", "temperature", 0.2),
            "system_prompt": self._get_str(
                "llm",
                "system_prompt",
                prompt_text if isinstance(prompt_text, str) else "",
            ),
        }

    def media_settings(self) -> dict[str, object]:
        return {
            "output_dir": self._get_str("media", "output_dir", "data/media"),
            "download_timeout": self._get_float("media", "download_timeout", 30.0),
            "ffmpeg_timeout": self._get_float("media", "ffmpeg_timeout", 60.0),
        }

    def store_settings(self) -> dict[str, str]:
        return {"db_path": self._get_str("store", "db_path", "data/workflows.db")}

    def api_settings(self) -> dict[str, object]:
        return {
            "cors_origins": self._get_csv(
                "api",
                "cors_origins",
                ["http://127.0.0.1:3000", "http://localhost:3000"],
            ),
        }

    def _get_str(self, section: str, key: str, fallback: str) -> str:
        return self._parser.get(section, key, fallback=fallback)

    def _get_float(self, section: str, key: str, fallback: float) -> float:
        return self._parser.getfloat(section, key, fallback=fallback)

    def _get_csv(self, section: str, key: str, fallback: list[str]) -> list[str]:
        value = self._parser.get(section, key, fallback="")
        if not value:
            return list(fallback)
        return [part.strip() for part in value.split(",") if part.strip()]

    def _load_prompts(self, path: Path) -> dict[str, object]:
        if not path.exists():
            return {}
        try:
            raw = yaml.safe_load(path.read_text(encoding="utf-8"))
        except yaml.YAMLError:
            return {}
        return raw if isinstance(raw, dict) else {}
