"""Audio normalization for the transcription service using ffmpeg."""

import logging
import os
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

from vetscribe.config import get_settings
from vetscribe.services.errors import AudioNormalizationError

settings = get_settings()
logger = logging.getLogger(__name__)


def _usable(path: Path) -> bool:
    """Success predicate shared by every strategy: the file exists and is non-empty."""
    try:
        return path.is_file() and path.stat().st_size > 0
    except OSError:
        return False


@dataclass(frozen=True)
class ConversionStrategy:
    """
    One way of producing a transcription-ready file.

    `build_args(ffmpeg, source, output)` returns the command line. A strategy
    without `build_args` uses the source file as-is.
    """

    name: str
    suffix: str = ""
    build_args: Optional[Callable[[str, Path, Path], list[str]]] = None

    @property
    def converts(self) -> bool:
        return self.build_args is not None

    def output_path(self, source: Path, work_dir: Path) -> Path:
        # Derived from the stored file name, which is unique per consultation.
        return work_dir / f"{source.name}.{self.name}{self.suffix}"


def _mp3_16k_mono(ffmpeg: str, source: Path, output: Path) -> list[str]:
    return [
        ffmpeg, "-y", "-i", str(source),
        "-ar", "16000", "-ac", "1",
        "-c:a", "libmp3lame", "-b:a", "64k",
        str(output),
    ]


def _webm_to_wav(ffmpeg: str, source: Path, output: Path) -> list[str]:
    return [
        ffmpeg, "-y", "-f", "webm", "-i", str(source),
        "-ar", "16000", "-ac", "1",
        "-f", "wav",
        str(output),
    ]


DEFAULT_STRATEGIES: tuple[ConversionStrategy, ...] = (
    ConversionStrategy("mp3_16k_mono", ".mp3", _mp3_16k_mono),
    ConversionStrategy("webm_to_wav", ".wav", _webm_to_wav),
    # Some uploads are already acceptable to the transcription service.
    ConversionStrategy("original"),
)


@dataclass
class NormalizedAudio:
    """The file chosen for transcription plus any intermediates to remove."""

    path: Path
    strategy: str
    intermediates: list[Path] = field(default_factory=list)

    def cleanup(self) -> None:
        for p in self.intermediates:
            try:
                os.unlink(p)
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.warning(f"Could not remove intermediate file {p}: {e}")
        self.intermediates = []

    def __enter__(self) -> "NormalizedAudio":
        return self

    def __exit__(self, *exc_info) -> None:
        self.cleanup()


class AudioNormalizer:
    """Tries each conversion strategy in order until one yields a usable file."""

    def __init__(
        self,
        strategies: tuple[ConversionStrategy, ...] = DEFAULT_STRATEGIES,
        ffmpeg_path: str | None = None,
        timeout_seconds: float | None = None,
        work_dir: Path | None = None,
    ):
        self.strategies = strategies
        self.ffmpeg_path = ffmpeg_path or settings.ffmpeg_path
        self.timeout_seconds = timeout_seconds or settings.conversion_timeout_seconds
        self.work_dir = Path(work_dir or settings.conversion_dir)

    def _run(self, strategy: ConversionStrategy, source: Path, output: Path) -> bool:
        """Run one ffmpeg conversion. Any failure is reported as False."""
        cmd = strategy.build_args(self.ffmpeg_path, source, output)
        try:
            subprocess.run(
                cmd,
                check=True,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                timeout=self.timeout_seconds,
            )
        except subprocess.CalledProcessError as e:
            stderr = e.stderr.decode("utf-8", "ignore") if e.stderr else ""
            logger.info(
                f"Conversion '{strategy.name}' failed for {source.name}: "
                f"{stderr.strip()[-500:] or f'exit code {e.returncode}'}"
            )
            return False
        except subprocess.TimeoutExpired:
            logger.info(
                f"Conversion '{strategy.name}' timed out after {self.timeout_seconds}s for {source.name}"
            )
            return False
        except OSError as e:
            logger.warning(f"Could not run {self.ffmpeg_path} for '{strategy.name}': {e}")
            return False
        return _usable(output)

    def normalize(self, source: Path) -> NormalizedAudio:
        """
        Produce a transcription-ready file from `source`.

        The source is never modified or deleted. Raises
        AudioNormalizationError if no strategy produced a non-empty file.
        """
        source = Path(source)
        self.work_dir.mkdir(parents=True, exist_ok=True)

        for strategy in self.strategies:
            if not strategy.converts:
                if _usable(source):
                    logger.info(f"Using unconverted file {source.name} for transcription")
                    return NormalizedAudio(path=source, strategy=strategy.name)
                continue

            output = strategy.output_path(source, self.work_dir)
            if self._run(strategy, source, output):
                logger.info(
                    f"Converted {source.name} with '{strategy.name}' "
                    f"({output.stat().st_size} bytes)"
                )
                return NormalizedAudio(path=output, strategy=strategy.name, intermediates=[output])

            try:
                os.unlink(output)
            except FileNotFoundError:
                pass

        raise AudioNormalizationError(f"Audio file is empty or corrupted: {source.name}")


# Singleton instance
audio_normalizer = AudioNormalizer()
