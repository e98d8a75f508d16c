import json
import logging
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)


class Preferences(BaseModel):
    """Device-local settings for theme and communication channels."""
    theme: Literal["light", "dark", "auto"] = "auto"
    call_method: Literal["twilio", "native"] = "twilio"
    sms_method: Literal["twilio", "native"] = "twilio"
    email_method: Literal["gmail", "native"] = "gmail"
    fallback_to_native: bool = True


class PreferenceStore:
    """Key-value preferences kept in a JSON file.

    Nothing is cached: every load() reads the file again.
    """

    def __init__(self, path: Path):
        self.path = Path(path)

    def load(self) -> Preferences:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                return Preferences.model_validate(json.load(f))
        except FileNotFoundError:
            return Preferences()
        except (json.JSONDecodeError, ValidationError) as exc:
            logger.warning("Ignoring unreadable preferences file %s: %s", self.path, exc)
            return Preferences()

    def save(self, preferences: Preferences) -> Preferences:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(preferences.model_dump(), f, indent=2)
        return preferences

    def update(self, **changes) -> Preferences:
        """Merge ``changes`` into the stored preferences and save them."""
        current = self.load().model_dump()
        current.update(changes)
        return self.save(Preferences.model_validate(current))
