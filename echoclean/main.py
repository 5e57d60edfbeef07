"""
Command-line host: runs one file through the engine process and writes the cleaned WAV.
"""

import argparse
import logging
import sys
from pathlib import Path

from echoclean.core.config import load_settings
from echoclean.core.errors import EchoCleanError
from echoclean.core.logging import setup_logging
from echoclean.core.models import AudioSignal
from echoclean.core.session import EngineClient
from echoclean.features.codec.adapter import decode, encode
from echoclean.features.codec.analysis import normalize, peak, reduction_db

logger = logging.getLogger("echoclean.main")

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CANCELLED = 130


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="echoclean",
        description="Remove self-referential echo from a recording with an NLMS filter.",
    )
    parser.add_argument("input", type=Path, help="Input audio file (WAV, FLAC, OGG, MP3...)")
    parser.add_argument("output", type=Path, help="Output WAV file")
    parser.add_argument("--filter-length", type=int, default=None,
                        help="Filter length in samples (128-2048, multiple of 128)")
    parser.add_argument("--step-size", type=float, default=None,
                        help="NLMS step size in (0, 0.2]")
    parser.add_argument("--normalize", type=float, default=None, metavar="RMS",
                        help="Scale the cleaned output to this RMS level before writing")
    parser.add_argument("--config", default=None, help="YAML config file")
    parser.add_argument("--log-level", default=None, help="Override app.log_level")
    return parser


def _print_progress(percent: int):
    sys.stdout.write(f"\rProcessing... {percent:3d}%")
    sys.stdout.flush()
    if percent >= 100:
        sys.stdout.write("\n")


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.normalize is not None and args.normalize <= 0:
        parser.error("--normalize must be positive")

    settings = load_settings(args.config)
    if args.log_level:
        settings.app.log_level = args.log_level
    setup_logging(level=settings.app.log_level, log_file=settings.app.log_file)

    job_settings = settings.processing.model_dump()
    if args.filter_length is not None:
        job_settings["filter_length"] = args.filter_length
    if args.step_size is not None:
        job_settings["step_size"] = args.step_size

    data = args.input.read_bytes()
    logger.info("Read %s (%d bytes)", args.input, len(data))

    client = EngineClient(settings)
    job_id = None
    try:
        client.start()
        client.initialize()
        job_id = client.submit(bytearray(data), job_settings)
        try:
            result = client.wait_result(job_id, on_progress=_print_progress)
        except KeyboardInterrupt:
            logger.info("Interrupted, cancelling job %s", job_id)
            client.cancel(job_id)
            result = client.wait_result(job_id)
    except EchoCleanError as e:
        logger.error("%s: %s", e.kind, e)
        return EXIT_FAILED
    finally:
        client.close()

    if result.status == "cancelled":
        logger.info("Job %s cancelled", job_id)
        return EXIT_CANCELLED
    if not result.success:
        logger.error("Job %s failed: %s: %s", job_id, result.error.kind, result.error.message)
        return EXIT_FAILED

    before = decode(data).samples
    cleaned = decode(result.output_bytes)
    logger.info("Echo reduction %.2f dB, output peak %.3f",
                reduction_db(before, cleaned.samples), peak(cleaned.samples))

    output = result.output_bytes
    if args.normalize is not None:
        scaled = AudioSignal(sample_rate=cleaned.sample_rate, samples=normalize(cleaned.samples, args.normalize))
        if peak(scaled.samples) > 1.0:
            logger.warning("Normalized output peaks at %.3f and will be clipped", peak(scaled.samples))
        output = encode(scaled, bit_depth=settings.codec.bit_depth)

    args.output.write_bytes(output)
    logger.info("Wrote %s (%d bytes)", args.output, len(output))
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
