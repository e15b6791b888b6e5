import json
import os
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Optional

DEFAULT_PATH = Path.home() / '.livequiz' / 'identity.json'


@dataclass(frozen=True)
class Identity:
    participant_id: str
    name: str


class IdentityStore:
    """Participant id and display name for this device, kept in a JSON file."""

    def __init__(self, path=None) -> None:
        self.path = Path(path) if path else DEFAULT_PATH

    def get(self) -> Optional[Identity]:
        try:
            with open(self.path, encoding='utf-8') as fh:
                data = json.load(fh)
        except (OSError, ValueError):
            return None
        if not isinstance(data, dict) or not data.get('participant_id') or not data.get('name'):
            return None
        return Identity(participant_id=data['participant_id'], name=data['name'])

    def set(self, identity: Identity) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix('.tmp')
        with open(tmp, 'w', encoding='utf-8') as fh:
            json.dump(asdict(identity), fh)
        os.replace(tmp, self.path)

    def clear(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
