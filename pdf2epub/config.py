"""
Configuration for PDF to EPUB conversion.

Holds the provider profiles used for vision transcription, the JSON
settings store that persists them, and the application-level knobs.
"""

import json
import logging
import os
import tempfile
import uuid
from dataclasses import dataclass, field, replace
from pathlib import Path

logger = logging.getLogger(__name__)

SETTINGS_KEY = "pdf2epub_settings"
DEFAULT_PROMPT = "Transcribe the text to the best of your abilities"
DEFAULT_PROFILE_NAME = "New Profile"
DEFAULT_API_KEY = "api_key"

PRESET_BASE_URLS: list[tuple[str, str]] = [
    ("Cerebras", "https://api.cerebras.ai/v1"),
    ("DeepSeek", "https://api.deepseek.com"),
    ("Fireworks AI", "https://api.fireworks.ai/inference/v1"),
    ("Google AI Studio", "https://generativelanguage.googleapis.com/v1beta/openai/"),
    ("Groq", "https://api.groq.com/openai/v1"),
    ("Hugging Face", "https://api-inference.huggingface.co/v1"),
    ("KoboldCPP", "http://localhost:5001/v1"),
    ("llama.cpp", "http://localhost:8080/v1"),
    ("LM Studio", "http://localhost:1234/v1"),
    ("Mistral AI", "https://api.mistral.ai/v1"),
    ("Ollama", "http://localhost:11434/v1"),
    ("OpenAI", "https://api.openai.com/v1"),
    ("OpenRouter", "https://openrouter.ai/api/v1"),
    ("SambaNova", "https://api.sambanova.ai/v1"),
    ("Together AI", "https://api.together.xyz/v1"),
    ("vLLM", "http://localhost:8000/v1"),
]


def preset_name_for(base_url: str) -> str | None:
    """Return the preset name matching a base URL, ignoring a trailing slash."""
    wanted = base_url.strip().rstrip("/")
    for name, url in PRESET_BASE_URLS:
        if url.rstrip("/") == wanted:
            return name
    return None


@dataclass(frozen=True)
class ProviderProfile:
    """An OpenAI-compatible vision provider.

    Attributes:
        id: Stable identifier
        name: Display name
        base_url: API root, e.g. ``https://api.openai.com/v1``
        api_key: Sent as a bearer token
        model: Model name passed in the request body
        prompt: Instruction sent alongside each page image
    """

    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    name: str = DEFAULT_PROFILE_NAME
    base_url: str = ""
    api_key: str = DEFAULT_API_KEY
    model: str = ""
    prompt: str = DEFAULT_PROMPT

    @property
    def is_configured(self) -> bool:
        return bool(self.base_url.strip())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "baseUrl": self.base_url,
            "apiKey": self.api_key,
            "model": self.model,
            "prompt": self.prompt,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ProviderProfile":
        return cls(
            id=str(data.get("id") or uuid.uuid4()),
            name=str(data.get("name") or DEFAULT_PROFILE_NAME),
            base_url=str(data.get("baseUrl", "")),
            api_key=str(data.get("apiKey", DEFAULT_API_KEY)),
            model=str(data.get("model", "")),
            prompt=str(data.get("prompt", DEFAULT_PROMPT)),
        )


@dataclass
class Settings:
    """Provider profiles plus the id of the active one."""

    profiles: list[ProviderProfile]
    active_profile_id: str

    @classmethod
    def default(cls) -> "Settings":
        profile = ProviderProfile()
        return cls(profiles=[profile], active_profile_id=profile.id)

    @property
    def active_profile(self) -> ProviderProfile:
        """The active profile, falling back to the first one."""
        for profile in self.profiles:
            if profile.id == self.active_profile_id:
                return profile
        return self.profiles[0]

    def get(self, profile_id: str) -> ProviderProfile:
        for profile in self.profiles:
            if profile.id == profile_id:
                return profile
        raise KeyError(f"Unknown profile: {profile_id}")

    def find(self, id_or_name: str) -> ProviderProfile:
        """Look a profile up by id, then by case-insensitive name."""
        for profile in self.profiles:
            if profile.id == id_or_name:
                return profile
        for profile in self.profiles:
            if profile.name.lower() == id_or_name.lower():
                return profile
        raise KeyError(f"Unknown profile: {id_or_name}")

    def add_profile(self, profile: ProviderProfile | None = None) -> ProviderProfile:
        profile = profile or ProviderProfile()
        self.profiles.append(profile)
        return profile

    def update_profile(self, profile_id: str, **changes) -> ProviderProfile:
        """Replace a profile with an updated copy.

        A blank name keeps the previous one.
        """
        current = self.get(profile_id)
        if "name" in changes and not str(changes["name"] or "").strip():
            changes.pop("name")
        updated = replace(current, **changes)
        self.profiles = [updated if p.id == profile_id else p for p in self.profiles]
        return updated

    def delete_profile(self, profile_id: str) -> None:
        """Delete a profile. The list is never left empty."""
        self.get(profile_id)
        self.profiles = [p for p in self.profiles if p.id != profile_id]
        if not self.profiles:
            self.profiles = [ProviderProfile()]
        if self.active_profile_id == profile_id or not any(
            p.id == self.active_profile_id for p in self.profiles
        ):
            self.active_profile_id = self.profiles[0].id

    def activate(self, profile_id: str) -> None:
        self.get(profile_id)
        self.active_profile_id = profile_id

    def to_dict(self) -> dict:
        return {
            "profiles": [p.to_dict() for p in self.profiles],
            "activeProfileId": self.active_profile_id,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Settings":
        raw_profiles = data.get("profiles") or []
        profiles = [ProviderProfile.from_dict(p) for p in raw_profiles if isinstance(p, dict)]
        if not profiles:
            return cls.default()
        active = str(data.get("activeProfileId") or profiles[0].id)
        return cls(profiles=profiles, active_profile_id=active)


class SettingsStore:
    """Loads and saves settings as a JSON blob under a fixed key."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def load(self) -> Settings:
        """Load settings, returning a single default profile when unavailable."""
        if not self.path.exists():
            return Settings.default()
        try:
            blob = json.loads(self.path.read_text(encoding="utf-8"))
            data = blob.get(SETTINGS_KEY)
            if isinstance(data, dict) and data.get("profiles"):
                return Settings.from_dict(data)
        except (OSError, ValueError, AttributeError) as e:
            logger.warning(f"Could not read settings from {self.path}: {e}")
        return Settings.default()

    def save(self, settings: Settings) -> None:
        """Write settings atomically, keeping any unrelated keys in the file."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        blob: dict = {}
        if self.path.exists():
            try:
                existing = json.loads(self.path.read_text(encoding="utf-8"))
                if isinstance(existing, dict):
                    blob = existing
            except (OSError, ValueError):
                pass
        blob[SETTINGS_KEY] = settings.to_dict()

        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(blob, f, indent=2)
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        logger.debug(f"Settings saved to {self.path}")


def default_settings_path() -> Path:
    root = os.environ.get("PDF2EPUB_HOME")
    if root:
        return Path(root) / "settings.json"
    return Path.home() / ".config" / "pdf2epub" / "settings.json"


@dataclass
class AppConfig:
    """Application configuration.

    Attributes:
        settings_path: JSON file holding provider profiles
        output_dir: Where exported EPUB files are written
        text_threshold: A page with more trimmed characters than this counts as real text
        render_zoom: PDF rasterization zoom factor (1.0 = 72 DPI)
        resize_target: Max short edge in pixels for page images (0 to disable)
        jpeg_quality: Quality for encoded page images
        max_tokens: Completion budget per page
        request_timeout: Seconds per provider request, None for no limit
    """

    settings_path: Path = field(default_factory=default_settings_path)
    output_dir: Path = Path(".")

    # Classification
    text_threshold: int = 20

    # Page images
    render_zoom: float = 2.0
    resize_target: int = 1600
    jpeg_quality: int = 90

    # Provider requests
    max_tokens: int = 4096
    request_timeout: float | None = None

    def __post_init__(self) -> None:
        """Validate and convert paths."""
        self.settings_path = Path(self.settings_path)
        self.output_dir = Path(self.output_dir)

        if self.text_threshold < 0:
            raise ValueError(f"text_threshold must be >= 0, got {self.text_threshold}")

        if self.render_zoom <= 0:
            raise ValueError(f"render_zoom must be > 0, got {self.render_zoom}")

        if self.resize_target < 0:
            raise ValueError(f"resize_target must be >= 0, got {self.resize_target}")

        if not 1 <= self.jpeg_quality <= 100:
            raise ValueError(f"jpeg_quality must be in [1, 100], got {self.jpeg_quality}")

        if self.max_tokens < 1:
            raise ValueError(f"max_tokens must be >= 1, got {self.max_tokens}")

        if self.request_timeout is not None and self.request_timeout <= 0:
            raise ValueError(f"request_timeout must be > 0, got {self.request_timeout}")

    @property
    def settings_store(self) -> SettingsStore:
        return SettingsStore(self.settings_path)
