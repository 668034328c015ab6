"""Command line entry point for the Image Analyzer project."""

from __future__ import annotations

import argparse
import json
import logging
import signal
import sys
from pathlib import Path

from . import AppConfig, BatchOrchestrator, CancellationToken, ConfigurationError, ImageQueue
from .config import ProviderType, ToneOption
from .io.export import DEFAULT_EXPORT_FILENAMES, ExportFormat, render_export, write_export
from .services.batch import BatchEvent, EventKind
from .settings_store import SettingsStore
from .utils.paths import resolve_image_paths

logger = logging.getLogger("image_analyzer")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Image Analyzer")
    parser.add_argument(
        "--input",
        "-i",
        type=Path,
        action="append",
        help="Image file or directory to analyse. May be repeated.",
    )
    parser.add_argument("--recursive", "-r", action="store_true", help="Descend into sub-directories.")
    parser.add_argument("--config", type=Path, help="Settings file to use instead of the stored one.")
    parser.add_argument(
        "--save-settings",
        action="store_true",
        help="Persist the effective settings (after overrides) to the settings store.",
    )
    parser.add_argument("--provider", choices=[kind.value for kind in ProviderType])
    parser.add_argument("--model", help="Override the model identifier.")
    parser.add_argument("--base-url", help="Endpoint for local or custom providers.")
    parser.add_argument("--api-key", help="Credential for the selected provider.")
    parser.add_argument("--tone", choices=[tone.value for tone in ToneOption])
    parser.add_argument("--custom-tone", help="Tone instruction used with --tone custom.")
    parser.add_argument("--system-message", help="Replace the base system message.")
    parser.add_argument(
        "--fields",
        help="Comma-separated output fields to request, e.g. title,tags,mood.",
    )
    parser.add_argument(
        "--list-fields",
        action="store_true",
        help="Print the configured output fields and exit.",
    )
    parser.add_argument(
        "--format",
        choices=[fmt.value for fmt in ExportFormat],
        default=ExportFormat.JSON.value,
        help="Export format for completed results.",
    )
    parser.add_argument(
        "--output",
        "-o",
        type=Path,
        help="Write the export to this file (a directory gets the default file name).",
    )
    parser.add_argument("--no-upload", action="store_true", help="Skip asset storage.")
    parser.add_argument("--asset-dir", type=Path, help="Store assets in a local directory.")
    parser.add_argument("--no-index", action="store_true", help="Skip search indexing.")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging.")
    return parser


def _apply_overrides(config: AppConfig, args: argparse.Namespace) -> AppConfig:
    if args.provider:
        config.switch_provider(ProviderType(args.provider))
    if args.model:
        config.model = args.model
    if args.base_url:
        config.base_url = args.base_url
    if args.api_key:
        config.api_key = args.api_key
    if args.tone:
        config.tone = ToneOption(args.tone)
    if args.custom_tone:
        config.custom_tone = args.custom_tone
    if args.system_message:
        config.system_message = args.system_message
    if args.fields:
        config.enabled_outputs = [name.strip() for name in args.fields.split(",") if name.strip()]
    if args.no_upload:
        config.upload_assets = False
    if args.asset_dir:
        config.asset_directory = args.asset_dir
    if args.no_index:
        config.index_results = False
    # Re-run validation so overrides get the same normalisation as loaded files.
    return AppConfig.model_validate(config.as_dict())


def _report(event: BatchEvent) -> None:
    if event.kind == EventKind.ITEM_STARTED and event.item is not None:
        logger.info("[%d/%d] Analysing %s", event.index + 1, event.total, event.item.filename)
    elif event.kind == EventKind.ITEM_FAILED and event.item is not None:
        logger.error("Failed: %s - %s", event.item.filename, event.item.error_message)
    elif event.kind == EventKind.RUN_CANCELLED:
        logger.warning("Processing stopped")


def _interrupt_handler(token: CancellationToken):
    """First Ctrl-C stops after the current image; a second one aborts."""

    def handle(signum, frame) -> None:
        if token.cancelled:
            raise KeyboardInterrupt
        token.cancel()
        logger.warning("Stopping after the current image; press Ctrl-C again to abort")

    return handle


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(levelname)s - %(message)s",
    )

    store = SettingsStore(path=args.config) if args.config else SettingsStore()
    try:
        config = _apply_overrides(store.load(), args)
    except ValueError as exc:
        parser.error(str(exc))

    if args.save_settings:
        store.save(config)

    if args.list_fields:
        payload = [
            {**spec.model_dump(mode="json"), "enabled": config.is_enabled(spec.name)}
            for spec in config.output_fields
        ]
        json.dump(payload, sys.stdout, indent=2)
        sys.stdout.write("\n")
        return 0

    if not args.input:
        parser.error("--input is required.")

    paths: list[Path] = []
    for target in args.input:
        try:
            paths.extend(resolve_image_paths(target, recursive=args.recursive))
        except FileNotFoundError:
            parser.error(f"No such file or directory: {target}")

    token = CancellationToken()
    previous_handler = signal.signal(signal.SIGINT, _interrupt_handler(token))
    try:
        with ImageQueue() as queue:
            queue.add_paths(paths)
            if not queue.pending():
                logger.error("No pending images to analyze")
                return 1

            orchestrator = BatchOrchestrator.from_config(config)
            try:
                summary = orchestrator.run(queue, cancel=token, on_event=_report)
            except ConfigurationError as exc:
                logger.error("%s", exc)
                return 2
            except KeyboardInterrupt:
                logger.error("Aborted")
                return 130

            fmt = ExportFormat(args.format)
            content = render_export(fmt, queue, config.active_fields())
            if args.output:
                target = args.output
                if target.is_dir():
                    target = target / DEFAULT_EXPORT_FILENAMES[fmt]
                write_export(target, content)
                logger.info("Wrote %s", target)
            elif content:
                sys.stdout.write(content + "\n")
    finally:
        signal.signal(signal.SIGINT, previous_handler)

    logger.info(
        "%d complete, %d failed, %d left pending",
        summary.completed,
        summary.failed,
        summary.remaining,
    )
    return 1 if summary.failed else 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
