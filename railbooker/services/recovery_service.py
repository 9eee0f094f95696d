"""
Crash recovery checkpoints

The workflow writes a checkpoint after every state change so that, after
a crash, the last known position, attempt count and error can be
inspected. Checkpoints are diagnostic only; runs never resume from them.
"""

import json
import logging
import os
from pathlib import Path
from typing import Optional, Union

from filelock import FileLock

from ..exceptions import PersistenceError
from ..models.session import RecoveryCheckpoint


class RecoveryStore:
    """JSON file holding the latest RecoveryCheckpoint"""

    def __init__(self, checkpoint_file: Union[str, Path]):
        self.checkpoint_file = Path(checkpoint_file)
        self.lock = FileLock(str(self.checkpoint_file) + ".lock")
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    def save_checkpoint(self, checkpoint: RecoveryCheckpoint):
        temp_file = self.checkpoint_file.with_suffix(".tmp")
        try:
            self.checkpoint_file.parent.mkdir(parents=True, exist_ok=True)
            with self.lock:
                with open(temp_file, "w", encoding="utf-8") as handle:
                    json.dump(checkpoint.to_dict(), handle, indent=2)
                os.replace(temp_file, self.checkpoint_file)
        except OSError as e:
            raise PersistenceError(str(self.checkpoint_file), str(e)) from e
        self.logger.debug(f"Checkpoint saved at state {checkpoint.current_state}")

    def load_checkpoint(self) -> Optional[RecoveryCheckpoint]:
        if not self.checkpoint_file.exists():
            return None
        try:
            with self.lock:
                with open(self.checkpoint_file, "r", encoding="utf-8") as handle:
                    data = json.load(handle)
            return RecoveryCheckpoint.from_dict(data)
        except (OSError, ValueError, KeyError, TypeError) as e:
            self.logger.error(f"Could not read checkpoint {self.checkpoint_file}: {e}")
            return None

    def clear(self):
        if not self.checkpoint_file.exists():
            return
        with self.lock:
            if self.checkpoint_file.exists():
                self.checkpoint_file.unlink()
                self.logger.debug("Checkpoint cleared")
