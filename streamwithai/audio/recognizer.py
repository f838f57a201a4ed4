"""Local speech recognition engine: microphone, VAD and faster-whisper."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import queue
import threading
from typing import Any, Callable, Optional

from ..config.settings import Settings
from ..core.errors import DeviceUnavailable, PermissionDenied, ResourceBusy, Unsupported
from ..services.schemas import TranscriptEvent
from .capture import MicrophoneConfig, MicrophoneStream
from .segmenter import SegmentKind, UtteranceSegmenter
from .transcriber import FasterWhisperEngine, WhisperConfig
from .vad import VADConfig, VoiceActivityDetector

LOGGER = logging.getLogger(__name__)

OnStart = Callable[[], None]
OnEnd = Callable[[], None]
OnResult = Callable[[TranscriptEvent], None]
OnError = Callable[[str, str], None]


class WhisperRecognizer:
    """Recognition session run on a worker thread.

    A session waits for speech, records until trailing silence, transcribes the
    utterance and ends. Error codes follow the browser speech API vocabulary:
    ``no-speech``, ``audio-capture``, ``not-allowed``, ``network``.
    """

    _FRAME_MS = 30
    _SAMPLE_RATE = 16_000

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self._callbacks: Optional[tuple[OnStart, OnEnd, OnResult, OnError]] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._stop = threading.Event()
        self._frames: queue.Queue[bytes] = queue.Queue(maxsize=256)
        self._engine: Optional[FasterWhisperEngine] = None
        self._engine_error: Optional[str] = None
        self._engine_lock = threading.Lock()

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #
    def bind(self, on_start: OnStart, on_end: OnEnd, on_result: OnResult, on_error: OnError) -> None:
        self._callbacks = (on_start, on_end, on_result, on_error)

    def start(self) -> None:
        if self._callbacks is None:
            raise RuntimeError("Recognition callbacks not bound.")
        if self._engine_error is not None:
            raise Unsupported(self._engine_error)
        if self._thread is not None and self._thread.is_alive():
            raise ResourceBusy("La reconnaissance vocale est déjà démarrée")
        self._loop = asyncio.get_running_loop()
        self._stop.clear()
        self._drain_frames()
        self._thread = threading.Thread(target=self._run, name="whisper-recognizer", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()

    # ------------------------------------------------------------------ #
    # Worker thread
    # ------------------------------------------------------------------ #
    def _run(self) -> None:
        microphone = MicrophoneStream(
            MicrophoneConfig(
                sample_rate=self._SAMPLE_RATE,
                frame_duration_ms=self._FRAME_MS,
                device_name=self.settings.input_device,
            ),
            self._push_frame,
        )
        try:
            engine = self._ensure_engine()
            if engine is None:
                self._emit_error("not-allowed", self._engine_error or "Modèle de reconnaissance indisponible")
                return
            try:
                microphone.start()
            except PermissionDenied as exc:
                self._emit_error("not-allowed", exc.message)
                return
            except DeviceUnavailable as exc:
                self._emit_error("audio-capture", exc.message)
                return
            self._emit("start")
            segment = self._listen()
            microphone.stop()
            if segment is None:
                return
            if segment.kind is SegmentKind.NO_SPEECH:
                self._emit_error("no-speech", "Aucune parole détectée")
                return
            try:
                event = engine.transcribe(segment.audio)
            except Exception as exc:
                LOGGER.exception("Transcription failed")
                self._emit_error("transcription", str(exc))
                return
            if event.text:
                self._emit("result", event)
            else:
                self._emit_error("no-speech", "Aucune parole reconnue")
        finally:
            microphone.stop()
            self._emit("end")

    def _listen(self):  # noqa: ANN202
        segmenter = UtteranceSegmenter(
            VoiceActivityDetector(
                VADConfig(
                    aggressiveness=self.settings.vad_aggressiveness,
                    sample_rate=self._SAMPLE_RATE,
                    frame_duration_ms=self._FRAME_MS,
                )
            ),
            frame_duration_ms=self._FRAME_MS,
            silence_duration=self.settings.silence_duration,
            no_speech_timeout=self.settings.no_speech_timeout,
            max_utterance=self.settings.max_utterance,
        )
        while not self._stop.is_set():
            try:
                frame = self._frames.get(timeout=0.1)
            except queue.Empty:
                continue
            segment = segmenter.feed(frame)
            if segment is not None:
                return segment
        return segmenter.flush()

    def _ensure_engine(self) -> Optional[FasterWhisperEngine]:
        with self._engine_lock:
            if self._engine is None and self._engine_error is None:
                LOGGER.info("Chargement du modèle Whisper '%s'", self.settings.asr_model)
                try:
                    self._engine = FasterWhisperEngine(
                        WhisperConfig(
                            model=self.settings.asr_model,
                            device=self.settings.asr_device,
                            compute_type=self.settings.asr_compute_type,
                            language=self.settings.recognition_language,
                        )
                    )
                except Exception as exc:
                    LOGGER.exception("Whisper model could not be loaded")
                    self._engine_error = f"Modèle Whisper indisponible: {exc}"
            return self._engine

    def _push_frame(self, frame: bytes) -> None:
        try:
            self._frames.put_nowait(frame)
        except queue.Full:
            try:
                self._frames.get_nowait()
            except queue.Empty:
                pass
            with contextlib.suppress(queue.Full):
                self._frames.put_nowait(frame)

    def _drain_frames(self) -> None:
        while True:
            try:
                self._frames.get_nowait()
            except queue.Empty:
                return

    def _emit_error(self, code: str, message: str) -> None:
        self._emit("error", code, message)

    def _emit(self, kind: str, *args: Any) -> None:
        loop = self._loop
        if loop is None or loop.is_closed() or self._callbacks is None:
            return
        on_start, on_end, on_result, on_error = self._callbacks
        target = {"start": on_start, "end": on_end, "result": on_result, "error": on_error}[kind]
        try:
            loop.call_soon_threadsafe(target, *args)
        except RuntimeError:  # pragma: no cover - loop closed during shutdown
            LOGGER.debug("Loop closed, dropping recognition %s", kind)
