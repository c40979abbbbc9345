"""Hand Reader — main entry point.

Wires together: screen capture → hand recognizer → background scanner → log.
"""

from __future__ import annotations

import json
import logging
import signal
import sys
from pathlib import Path

from PyQt6.QtCore import QCoreApplication, QTimer

from handreader.calibration import HttpReferenceProvider
from handreader.capture import ScreenCapture
from handreader.models import AppConfig, HandState
from handreader.recognizer import HandRecognizer
from handreader.scanner import HandScanner
from handreader.templates import TemplateRepository

logging.basicConfig(
    level=logging.DEBUG,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

CONFIG_PATH = Path(__file__).parent.parent / "config" / "default_config.json"


def load_config(path: Path = CONFIG_PATH) -> AppConfig:
    """Load config from JSON, falling back to defaults."""
    if path.exists():
        with open(path) as f:
            data = json.load(f)
        logger.info(f"Loaded config from {path}")
        return AppConfig.from_dict(data)
    logger.warning(f"Config not found at {path}, using defaults")
    return AppConfig()


def build_recognizer(config: AppConfig, base_dir: Path) -> HandRecognizer:
    templates_dir = Path(config.templates_dir)
    if not templates_dir.is_absolute():
        templates_dir = base_dir / templates_dir
    recognizer = HandRecognizer(config, repository=TemplateRepository(templates_dir))
    loaded = recognizer.load_templates()
    logger.info(f"{loaded} persisted templates for the current deck")
    return recognizer


def main() -> None:
    config_path = Path(sys.argv[1]) if len(sys.argv) > 1 else CONFIG_PATH
    config = load_config(config_path)
    if len(config.deck) != 8:
        logger.warning(f"Deck has {len(config.deck)} cards; expected 8")

    app = QCoreApplication(sys.argv)

    recognizer = build_recognizer(config, config_path.parent.parent)
    if not recognizer.is_calibrated:
        provider = HttpReferenceProvider(
            url_template=config.reference_url_template,
            timeout=config.reference_timeout_s,
        )
        report = recognizer.calibrate_from_references(provider)
        for label, error in report.failed.items():
            logger.warning(f"No template for '{label}': {error}")

    capture = ScreenCapture(monitor_index=config.monitor_index)
    capture.start()
    scanner = HandScanner(
        recognizer,
        capture,
        interval_ms=config.scan_interval_ms,
        missing_frame_warn_after=config.missing_frame_warn_after,
    )

    def on_hand_changed(state: HandState) -> None:
        logger.debug(f"Cards by slot: {state.label_to_slot}, next: {state.preview_label}")

    scanner.hand_changed.connect(on_hand_changed)

    if not scanner.start():
        logger.error("Cannot start scanning: not enough templates")
        capture.stop()
        recognizer.close()
        sys.exit(1)

    # Let Ctrl+C reach Python while the Qt loop runs
    signal.signal(signal.SIGINT, lambda *_: app.quit())
    heartbeat = QTimer()
    heartbeat.start(250)
    heartbeat.timeout.connect(lambda: None)

    exit_code = app.exec()

    # Cleanup
    scanner.close()
    capture.stop()
    recognizer.close()
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
