import pathlib
from typing import Dict, Optional

from blowout.util.logging import get_logger

try:
    import pygame
except ImportError:  # pragma: no cover
    pygame = None


class Celebration:
    """Presentation side of a session: reacts to the blow and to fallback offers."""

    def celebrate(self) -> None:
        raise NotImplementedError

    def offer_fallback(self, reason: str) -> None:
        raise NotImplementedError


class LogCelebration(Celebration):
    def __init__(self):
        self.celebrated = 0
        self.fallback_reasons = []
        self._log = get_logger("output.celebration")

    def celebrate(self) -> None:
        self.celebrated += 1
        self._log.info("Candles blown out! Happy birthday!")

    def offer_fallback(self, reason: str) -> None:
        self.fallback_reasons.append(reason)
        self._log.warning("Can't use the mic? Press Enter to blow the candles out (%s)", reason)


class PygameCelebration(LogCelebration):
    """Plays the birthday song through pygame.mixer on top of the log output."""

    def __init__(self, song: str, volume: float = 0.8):
        super().__init__()
        self.song = pathlib.Path(song)
        self.volume = volume
        self._sound: Optional[object] = None
        pygame.mixer.init()
        self._log.info("pygame.mixer initialized (song=%s)", self.song)

    def _load(self):
        if self._sound is not None:
            return self._sound
        if not self.song.exists():
            self._log.warning("Song file missing: %s", self.song)
            return None
        self._sound = pygame.mixer.Sound(str(self.song))
        return self._sound

    def celebrate(self) -> None:
        super().celebrate()
        sound = self._load()
        if not sound:
            return
        sound.set_volume(self.volume)
        sound.play()


def build_celebration(settings: Dict) -> Celebration:
    log = get_logger("output.celebration")
    if not settings.get("enabled", True):
        log.info("Song disabled via config")
        return LogCelebration()
    if not pygame:
        log.warning("pygame not installed; song playback disabled")
        return LogCelebration()
    try:
        return PygameCelebration(settings.get("song", "sounds/happy_birthday.ogg"), float(settings.get("volume", 0.8)))
    except pygame.error as exc:
        log.warning("No audio output for the song (%s); logging only", exc)
        return LogCelebration()
