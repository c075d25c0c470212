"""
Decode Sources for Ticket Scanner Application

A decode source turns a capture device into a stream of decoded QR
strings delivered to a single callback. The scanner session acquires and
releases the device (``open``/``close``); the redemption state machine
pauses and resumes decoding (``start``/``stop``).
"""

import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Callable, List, Optional, Sequence

from .exceptions import CameraUnavailableException


logger = logging.getLogger(__name__)

DecodeCallback = Callable[[str], None]

# OpenCV and pyzbar are loaded on first camera use so manual-only
# stations can run without them.
cv2 = None
pyzbar = None


def _load_camera_backend():
    global cv2, pyzbar
    if cv2 is None or pyzbar is None:
        try:
            import cv2 as _cv2
            from pyzbar import pyzbar as _pyzbar
        except ImportError as e:
            raise CameraUnavailableException(
                "camera",
                f"QR decoding requires OpenCV and pyzbar ({e})"
            )
        cv2 = _cv2
        pyzbar = _pyzbar
    return cv2, pyzbar


def decode_qr_frame(frame) -> List[str]:
    """
    Decode every QR code visible in a BGR frame

    Args:
        frame: Image as returned by ``VideoCapture.read``

    Returns:
        Decoded payloads, empty when the frame holds no QR code
    """
    cv, zbar = _load_camera_backend()
    gray = cv.cvtColor(frame, cv.COLOR_BGR2GRAY)
    symbols = zbar.decode(gray, symbols=[zbar.ZBarSymbol.QRCODE])
    return [symbol.data.decode("utf-8", errors="replace") for symbol in symbols]


def open_video_capture(device_id: int, resolution: Sequence[int], fps: int):
    """Open an OpenCV capture device and apply the requested format"""
    cv, _ = _load_camera_backend()
    capture = cv.VideoCapture(device_id)
    capture.set(cv.CAP_PROP_FRAME_WIDTH, resolution[0])
    capture.set(cv.CAP_PROP_FRAME_HEIGHT, resolution[1])
    capture.set(cv.CAP_PROP_FPS, fps)
    return capture


class DecodeSource(ABC):
    """
    Abstract base class for decode sources

    Subclasses deliver each decoded payload through ``_emit``. Used as a
    context manager, the device is released on every exit path.
    """

    def __init__(self):
        self._callback: Optional[DecodeCallback] = None

    def bind(self, callback: DecodeCallback) -> None:
        """Set the single consumer of decoded payloads"""
        self._callback = callback

    def _emit(self, payload: str) -> None:
        if self._callback is None:
            logger.debug("Decoded payload with no consumer bound; dropped")
            return
        self._callback(payload)

    @abstractmethod
    def open(self) -> None:
        """
        Acquire the capture device

        Raises:
            CameraUnavailableException: If the device cannot be acquired
        """
        pass

    @abstractmethod
    def close(self) -> None:
        """Stop decoding and release the capture device"""
        pass

    @abstractmethod
    def start(self) -> None:
        """Begin or resume delivering decoded payloads"""
        pass

    @abstractmethod
    def stop(self) -> None:
        """Pause delivery; safe to call from inside the callback"""
        pass

    @abstractmethod
    def is_running(self) -> bool:
        pass

    def __enter__(self) -> 'DecodeSource':
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.close()
        return False


class CameraDecodeSource(DecodeSource):
    """
    Camera-backed decode source

    Reads frames on a daemon thread and emits the first QR payload found
    in a frame. Frames without a QR code are skipped silently.
    """

    def __init__(self, device_id: int = 0, resolution: Sequence[int] = (640, 480),
                 fps: int = 30, poll_interval: float = 0.05,
                 capture_factory: Optional[Callable[[], Any]] = None,
                 frame_decoder: Optional[Callable[[Any], List[str]]] = None):
        """
        Initialize camera decode source

        Args:
            device_id: OpenCV capture device index
            resolution: Requested frame width and height
            fps: Requested frame rate
            poll_interval: Pause between frames, in seconds
            capture_factory: Builds the capture object; defaults to OpenCV
            frame_decoder: Turns a frame into payloads; defaults to pyzbar
        """
        super().__init__()
        self.device_id = device_id
        self.resolution = tuple(resolution)
        self.fps = fps
        self.poll_interval = poll_interval
        self._capture_factory = capture_factory or (
            lambda: open_video_capture(self.device_id, self.resolution, self.fps)
        )
        self._frame_decoder = frame_decoder or decode_qr_frame
        self._capture = None
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._lock = threading.Lock()

    def open(self) -> None:
        if self._capture is not None:
            return
        try:
            capture = self._capture_factory()
        except CameraUnavailableException:
            raise
        except Exception as e:
            raise CameraUnavailableException(str(self.device_id), str(e))

        if not capture.isOpened():
            capture.release()
            raise CameraUnavailableException(str(self.device_id), "device could not be opened")

        self._capture = capture
        logger.info("Camera %s opened: %sx%s @ %sfps",
                    self.device_id, self.resolution[0], self.resolution[1], self.fps)

    def close(self) -> None:
        self.stop()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=2.0)
        if self._capture is not None:
            self._capture.release()
            self._capture = None
            logger.info("Camera %s released", self.device_id)

    def start(self) -> None:
        with self._lock:
            if self._capture is None:
                raise CameraUnavailableException(str(self.device_id), "device is not open")
            self._stop_event.clear()
            if self._thread and self._thread.is_alive():
                return
            self._thread = threading.Thread(
                target=self._run_loop,
                name=f"CameraDecodeSource[{self.device_id}]",
                daemon=True
            )
            self._thread.start()

    def stop(self) -> None:
        with self._lock:
            self._stop_event.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread() and thread.is_alive():
            thread.join(timeout=2.0)

    def is_running(self) -> bool:
        return bool(self._thread and self._thread.is_alive() and not self._stop_event.is_set())

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            capture = self._capture
            if capture is None:
                break
            ok, frame = capture.read()
            if ok and frame is not None:
                self._handle_frame(frame)
            self._stop_event.wait(self.poll_interval)

    def _handle_frame(self, frame) -> None:
        try:
            payloads = self._frame_decoder(frame)
        except Exception as e:
            logger.error("QR decoding error: %s", e)
            return

        if not payloads or self._stop_event.is_set():
            return
        try:
            self._emit(payloads[0])
        except Exception:
            logger.exception("Decode callback failed")
