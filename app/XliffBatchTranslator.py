#!/usr/bin/env python3
"""
XLIFF Batch Translator

This script walks a folder of XLIFF 1.2 files (.xlf/.xliff), translates every
trans-unit through an OpenAI-compatible chat-completions endpoint (LM Studio by
default) and writes the translated files to a mirrored folder. Inline markup
and format placeholders are tokenized before translation and restored
afterwards, so only natural-language text is ever changed.
"""

import argparse
import logging
import re
import signal
import sys
import threading
import time
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple

from lxml import etree

from language_utils import get_language_code, get_language_name
from llm_provider import DEFAULT_ENDPOINT, DEFAULT_MODEL, LLMClient, LLMConfig
from placeholder_utils import protect_placeholders, restore_placeholders
from translation_cache import TranslationCache
from translation_logger import (
    FileTranslationLogger,
    NullTranslationLogger,
    TranslationLogger,
)
from translation_validator import (
    DEFAULT_ATTEMPT_POLICIES,
    DEFAULT_LEAKAGE_MARKERS,
    AttemptPolicy,
    translate_with_validation,
)
from xliff_tokenizer import (
    extract_text_with_tokens,
    rehydrate_nodes_from_tokens,
    set_element_content,
)

XLIFF_NS = "urn:oasis:names:tc:xliff:document:1.2"
XLIFF_EXTENSIONS = (".xlf", ".xliff")
TRANSLATION_LOG_NAME = "translation.log"

ProgressCallback = Callable[[int, int], None]

# ------------------------------------------------------------------------------
# Logger Setup
# ------------------------------------------------------------------------------

logger = logging.getLogger(__name__)


def _create_secure_parser() -> etree.XMLParser:
    """Return an XML parser that keeps whitespace and never resolves external entities."""
    return etree.XMLParser(
        remove_blank_text=False,
        resolve_entities=False,
        no_network=True,
        dtd_validation=False,
        load_dtd=False,
        recover=False,
    )


# Module loggers whose level follows --log-trace.
TOOL_LOGGERS = (
    __name__,
    "llm_provider",
    "translation_validator",
    "xliff_tokenizer",
    "language_utils",
)
# HTTP stack under the OpenAI SDK; only warnings and errors are shown.
HTTP_LOGGERS = ("openai", "httpx", "httpcore")


def configure_logging(trace: bool) -> None:
    """
    Send log records to stderr, keeping stdout free for the progress line.

    ``trace`` turns on per-unit debug output from this tool's modules; the
    HTTP stack stays at WARNING either way.
    """
    log_level = logging.DEBUG if trace else logging.INFO

    root_logger = logging.getLogger()
    if not root_logger.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(
            logging.Formatter("%(asctime)s [%(levelname)s] %(message)s")
        )
        root_logger.addHandler(handler)
    root_logger.setLevel(log_level)

    for name in TOOL_LOGGERS:
        logging.getLogger(name).setLevel(log_level)
    for name in HTTP_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def _qname(local_name: str) -> str:
    return f"{{{XLIFF_NS}}}{local_name}"


def normalize_whitespace(text: Optional[str]) -> str:
    """Collapse all whitespace runs to single spaces and trim the ends."""
    return " ".join((text or "").split())


def element_plain_text(element: Optional[etree._Element]) -> str:
    """Concatenated text of ``element`` and its descendants (XPath string value)."""
    if element is None:
        return ""
    return element.xpath("string()")


# ------------------------------------------------------------------------------
# Options & Statistics
# ------------------------------------------------------------------------------


@dataclass
class XliffTranslateOptions:
    """
    Per-run translation settings.

    Attributes:
        target_language: Language name used in prompts (e.g. "German")
        target_language_code: Code written to <file target-language> (e.g. "de")
        source_language: Language name of the source text
        translate_if_target_missing_or_same_as_source: When True, units whose
            target only repeats the source are translated too; when False only
            missing/empty targets are translated
        temperature: Sampling temperature sent with every request
        attempt_policies: Ordered attempts made before giving up on a unit
        use_cache: Reuse translations of identical protected text within the run
        leakage_markers: Phrases that disqualify a candidate translation
    """

    target_language: str
    target_language_code: Optional[str] = None
    source_language: str = "English"
    translate_if_target_missing_or_same_as_source: bool = True
    temperature: float = 0.0
    attempt_policies: Sequence[AttemptPolicy] = DEFAULT_ATTEMPT_POLICIES
    use_cache: bool = True
    leakage_markers: Sequence[str] = DEFAULT_LEAKAGE_MARKERS

    def __post_init__(self):
        if not self.target_language:
            raise ValueError("Target language is required")
        if not self.target_language_code:
            self.target_language_code = self.target_language
        if not self.attempt_policies:
            raise ValueError("At least one attempt policy is required")


@dataclass
class TranslationStats:
    """Unit counters for one file, or for a whole run once merged."""

    total_trans_units: int = 0
    translated_count: int = 0
    skipped_count: int = 0
    cache_hit_count: int = 0
    failure_count: int = 0

    def merge(self, other: "TranslationStats") -> None:
        for stat_field in fields(self):
            name = stat_field.name
            setattr(self, name, getattr(self, name) + getattr(other, name))


class TranslationCancelled(Exception):
    """Raised when a run is cancelled; the file being processed is not written."""


# ------------------------------------------------------------------------------
# Document Translation
# ------------------------------------------------------------------------------


class XliffTranslator:
    """
    Translates the trans-units of XLIFF 1.2 documents.

    The translator owns the run-wide cache. Units are processed one at a time
    and independently of each other; the output document is only written once
    every unit of the file has been processed.
    """

    def __init__(
        self,
        client,
        options: XliffTranslateOptions,
        cache: Optional[TranslationCache] = None,
        translation_logger: Optional[TranslationLogger] = None,
    ) -> None:
        self.client = client
        self.options = options
        self.cache = cache if cache is not None else TranslationCache()
        self.translation_logger = translation_logger or NullTranslationLogger()

    @staticmethod
    def count_trans_units(input_path: Path) -> int:
        """Count the trans-units of a file without translating anything."""
        tree = etree.parse(str(input_path), _create_secure_parser())
        return sum(1 for _ in tree.getroot().iter(_qname("trans-unit")))

    def translate_file(
        self,
        input_path: Path,
        output_path: Path,
        progress: Optional[ProgressCallback] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> TranslationStats:
        """
        Translate one XLIFF file and write the result to ``output_path``.

        Args:
            input_path: XLIFF file to read
            output_path: Where the translated document is written
            progress: Called with (processed_units, total_units) after each unit
            cancel_event: When set, processing stops before the next unit

        Returns:
            TranslationStats for this file

        Raises:
            lxml.etree.XMLSyntaxError: If the file is not well-formed XML
            TranslationCancelled: If ``cancel_event`` was set during processing
        """
        tree = etree.parse(str(input_path), _create_secure_parser())
        root = tree.getroot()

        file_element = next(root.iter(_qname("file")), None)
        if file_element is not None:
            file_element.set("target-language", self.options.target_language_code)

        trans_units = list(root.iter(_qname("trans-unit")))
        stats = TranslationStats(total_trans_units=len(trans_units))
        logger.info(f"Translating {len(trans_units)} trans-units in {input_path}")

        for processed, trans_unit in enumerate(trans_units, start=1):
            if cancel_event is not None and cancel_event.is_set():
                raise TranslationCancelled(
                    f"Cancelled while translating {input_path}"
                )

            self._translate_unit(str(input_path), trans_unit, stats)

            if progress is not None:
                progress(processed, len(trans_units))

        write_xliff(tree, Path(output_path))
        logger.info(
            f"Wrote {output_path}: {stats.translated_count} translated, "
            f"{stats.skipped_count} skipped, {stats.failure_count} failed"
        )
        return stats

    def _translate_unit(
        self, file_name: str, trans_unit: etree._Element, stats: TranslationStats
    ) -> None:
        unit_id = trans_unit.get("id")

        source_element = trans_unit.find(_qname("source"))
        if source_element is None:
            stats.skipped_count += 1
            self.translation_logger.skipped(
                file_name, unit_id, "No source element", ""
            )
            return

        source_plain = element_plain_text(source_element)
        if not source_plain.strip():
            stats.skipped_count += 1
            self.translation_logger.skipped(
                file_name, unit_id, "Empty source", source_plain
            )
            return

        target_element = trans_unit.find(_qname("target"))
        if target_element is None:
            target_element = etree.Element(_qname("target"))
            target_element.tail = source_element.tail
            # Indent the new target like its source.
            previous = source_element.getprevious()
            leading = previous.tail if previous is not None else trans_unit.text
            if leading and not leading.strip():
                source_element.tail = leading
            source_element.addnext(target_element)

        target_plain = element_plain_text(target_element)
        target_missing = not target_plain.strip()
        target_same_as_source = normalize_whitespace(
            target_plain
        ) == normalize_whitespace(source_plain)

        should_translate = target_missing or (
            self.options.translate_if_target_missing_or_same_as_source
            and target_same_as_source
        )
        if not should_translate:
            stats.skipped_count += 1
            self.translation_logger.skipped(
                file_name, unit_id, "Target already translated", source_plain
            )
            return

        # Inline nodes -> __XLF_TAG_i__, then placeholders -> __XLF_PH_i__
        text_with_tag_tokens, tag_nodes = extract_text_with_tokens(source_element)
        protected_text, placeholder_originals = protect_placeholders(
            text_with_tag_tokens
        )

        translated = self._translate_protected(
            file_name,
            unit_id,
            protected_text,
            len(placeholder_originals),
            len(tag_nodes),
            source_plain,
            stats,
        )

        restored = restore_placeholders(translated, placeholder_originals)
        set_element_content(
            target_element, rehydrate_nodes_from_tokens(restored, tag_nodes)
        )
        logger.debug(f"Unit {unit_id}: {source_plain!r} -> {restored!r}")

    def _translate_protected(
        self,
        file_name: str,
        unit_id: Optional[str],
        protected_text: str,
        ph_token_count: int,
        tag_token_count: int,
        source_plain: str,
        stats: TranslationStats,
    ) -> str:
        if self.options.use_cache:
            cached = self.cache.get(protected_text)
            if cached is not None:
                stats.cache_hit_count += 1
                if cached.translated:
                    stats.translated_count += 1
                    self.translation_logger.cached(file_name, unit_id, source_plain)
                else:
                    stats.failure_count += 1
                    self.translation_logger.failed(
                        file_name,
                        unit_id,
                        "Cache hit on untranslated text",
                        source_plain,
                    )
                return cached.text

        result = translate_with_validation(
            self.client,
            protected_text,
            self.options.target_language,
            ph_token_count,
            tag_token_count,
            attempt_policies=self.options.attempt_policies,
            leakage_markers=self.options.leakage_markers,
            temperature=self.options.temperature,
            source_language=self.options.source_language,
        )

        if result.ok:
            translated = result.text
            stats.translated_count += 1
        else:
            # Passthrough keeps every token, so the source structure is restored intact.
            translated = protected_text
            stats.failure_count += 1
            self.translation_logger.failed(
                file_name, unit_id, result.error, source_plain
            )
            logger.warning(f"Unit {unit_id} left untranslated: {result.error}")

        if self.options.use_cache:
            self.cache.put(protected_text, translated, translated=result.ok)

        return translated


def write_xliff(tree: etree._ElementTree, output_path: Path) -> None:
    """Serialize ``tree`` to ``output_path`` with a standard XML declaration."""
    xml_bytes = etree.tostring(tree, encoding="utf-8", xml_declaration=True)
    xml_bytes = re.sub(
        rb"^<\?xml version=['\"]1\.0['\"] encoding=['\"]utf-8['\"]\?>",
        b'<?xml version="1.0" encoding="utf-8"?>',
        xml_bytes,
        flags=re.IGNORECASE,
    )

    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, "wb") as f:
        f.write(xml_bytes)


# ------------------------------------------------------------------------------
# Batch Processing
# ------------------------------------------------------------------------------


def find_xliff_files(input_folder: Path) -> List[Path]:
    """Recursively list .xlf/.xliff files under ``input_folder`` in a stable order."""
    files = [
        path
        for path in Path(input_folder).rglob("*")
        if path.is_file() and path.suffix.lower() in XLIFF_EXTENSIONS
    ]
    return sorted(files)


def _format_elapsed(seconds: float) -> str:
    total = int(seconds)
    return f"{total // 3600:02}:{total % 3600 // 60:02}:{total % 60:02}"


def _print_progress(processed: int, total: int) -> None:
    percent = processed / total * 100.0 if total else 100.0
    print(
        f"\r  progress: {processed}/{total} units ({percent:.1f}%)",
        end="",
        flush=True,
    )


def format_stats(stats: TranslationStats) -> str:
    """One-line summary of a file's counters."""
    return (
        f"units: {stats.total_trans_units}, translated: {stats.translated_count}, "
        f"skipped: {stats.skipped_count}, cached: {stats.cache_hit_count}, "
        f"failures: {stats.failure_count}"
    )


def create_translation_report(
    stats: TranslationStats, files_count: int, elapsed: float
) -> str:
    """Generate the end-of-run summary as a string."""
    return (
        "Done.\n"
        f"Elapsed: {_format_elapsed(elapsed)}\n"
        f"Files: {files_count}\n"
        f"Total units: {stats.total_trans_units}\n"
        f"Translated: {stats.translated_count}\n"
        f"Skipped:    {stats.skipped_count}\n"
        f"Cached:     {stats.cache_hit_count}\n"
        f"Failures:   {stats.failure_count}"
    )


def translate_folder(
    translator: XliffTranslator,
    input_folder: Path,
    output_folder: Path,
    files: Sequence[Path],
    precount: bool = True,
    cancel_event: Optional[threading.Event] = None,
) -> Tuple[TranslationStats, float]:
    """
    Translate ``files`` one after another, mirroring them under ``output_folder``.

    Returns:
        A tuple of (aggregated stats, elapsed seconds)
    """
    total_units = 0
    if precount:
        print(f"Scanning {len(files)} files to count trans-units...")
        total_units = sum(translator.count_trans_units(path) for path in files)

    print(f"Files: {len(files)}")
    if precount:
        print(f"Total trans-units: {total_units}")

    started = time.monotonic()
    overall = TranslationStats()
    processed_units = 0

    for index, input_path in enumerate(files, start=1):
        relative = input_path.relative_to(input_folder)
        output_path = output_folder / relative

        print()
        print(f"[{index}/{len(files)}] {relative}")

        file_stats = translator.translate_file(
            input_path,
            output_path,
            progress=_print_progress,
            cancel_event=cancel_event,
        )
        print()

        overall.merge(file_stats)
        processed_units += file_stats.total_trans_units

        print(f"  {format_stats(file_stats)}")

        elapsed = _format_elapsed(time.monotonic() - started)
        if precount and total_units > 0:
            percent = processed_units / total_units * 100.0
            print(
                f"  overall: {processed_units}/{total_units} units "
                f"({percent:.1f}%), elapsed: {elapsed}"
            )
        else:
            print(f"  overall: {index}/{len(files)} files, elapsed: {elapsed}")

    return overall, time.monotonic() - started


# ------------------------------------------------------------------------------
# Main Entry Point
# ------------------------------------------------------------------------------


def _build_argument_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Translate XLIFF 1.2 files with an OpenAI-compatible LLM endpoint"
    )
    parser.add_argument("input_folder", help="Folder scanned recursively for .xlf/.xliff files")
    parser.add_argument("output_folder", help="Folder receiving the translated files")
    parser.add_argument(
        "target_language",
        help="Target language as a code (de, pt-BR) or English name (German)",
    )
    parser.add_argument(
        "endpoint",
        nargs="?",
        default=DEFAULT_ENDPOINT,
        help=f"Chat-completions endpoint (default: {DEFAULT_ENDPOINT})",
    )
    parser.add_argument(
        "model",
        nargs="?",
        default=DEFAULT_MODEL,
        help=f"Model name (default: {DEFAULT_MODEL})",
    )
    parser.add_argument(
        "--api-key",
        default=None,
        help="API key (default: $XLIFF_TRANSLATE_API_KEY or $OPENAI_API_KEY)",
    )
    parser.add_argument(
        "--system-message",
        default="",
        help="Optional system instruction sent with every request",
    )
    parser.add_argument(
        "--source-language",
        default="English",
        help="Language of the source text (default: English)",
    )
    parser.add_argument(
        "--max-tokens",
        type=int,
        default=DEFAULT_ATTEMPT_POLICIES[0].max_tokens,
        help="Output token budget of the first attempt",
    )
    parser.add_argument(
        "--retry-max-tokens",
        type=int,
        default=DEFAULT_ATTEMPT_POLICIES[-1].max_tokens,
        help="Output token budget of the stricter retry (0 disables the retry)",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=60.0,
        help="Request timeout in seconds",
    )
    parser.add_argument(
        "--no-translate-same-as-source",
        dest="translate_same_as_source",
        action="store_false",
        help="Only translate units whose target is missing or empty",
    )
    parser.add_argument(
        "--no-cache",
        dest="use_cache",
        action="store_false",
        help="Do not reuse translations of identical text within the run",
    )
    parser.add_argument(
        "--no-precount",
        dest="precount",
        action="store_false",
        help="Skip counting trans-units before translating",
    )
    parser.add_argument(
        "--log-trace",
        action="store_true",
        help="Enable debug logging",
    )
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    """
    Main entry point for the XLIFF batch translator.

    Returns:
        Process exit code: 0 on success (or no files), 2 for usage errors or a
        missing input folder, 1 for any other failure.
    """
    parser = _build_argument_parser()
    args = parser.parse_args(argv)

    configure_logging(args.log_trace)

    input_folder = Path(args.input_folder).resolve()
    output_folder = Path(args.output_folder).resolve()

    if not input_folder.is_dir():
        print(f"Error: input folder not found: {input_folder}")
        return 2

    attempt_policies = [AttemptPolicy(max_tokens=args.max_tokens)]
    if args.retry_max_tokens > 0:
        attempt_policies.append(AttemptPolicy(max_tokens=args.retry_max_tokens))

    cancel_event = threading.Event()
    previous_handler = None
    if threading.current_thread() is threading.main_thread():
        previous_handler = signal.signal(
            signal.SIGINT, lambda signum, frame: cancel_event.set()
        )

    translation_logger = None
    try:
        files = find_xliff_files(input_folder)
        if not files:
            print("No .xlf/.xliff files found.")
            return 0

        output_folder.mkdir(parents=True, exist_ok=True)

        llm_config = LLMConfig(
            endpoint=args.endpoint,
            model=args.model,
            api_key=args.api_key,
            system_message=args.system_message,
            timeout=args.timeout,
        )
        options = XliffTranslateOptions(
            target_language=get_language_name(args.target_language),
            target_language_code=get_language_code(args.target_language),
            source_language=args.source_language,
            translate_if_target_missing_or_same_as_source=args.translate_same_as_source,
            attempt_policies=attempt_policies,
            use_cache=args.use_cache,
        )
        logger.info(
            f"Translating into {options.target_language} ({options.target_language_code}) "
            f"using {llm_config.model} at {llm_config.endpoint}"
        )

        translation_logger = FileTranslationLogger(
            output_folder / TRANSLATION_LOG_NAME
        )
        translator = XliffTranslator(
            LLMClient(llm_config),
            options,
            cache=TranslationCache(),
            translation_logger=translation_logger,
        )

        overall, elapsed = translate_folder(
            translator,
            input_folder,
            output_folder,
            files,
            precount=args.precount,
            cancel_event=cancel_event,
        )

        print()
        print(create_translation_report(overall, len(files), elapsed))
        return 0
    except TranslationCancelled as e:
        print()
        print(f"Cancelled: {e}. The file in progress was not written.")
        return 1
    except Exception as e:
        logger.debug("Unhandled failure", exc_info=True)
        print(f"Failed: {e}")
        return 1
    finally:
        if translation_logger is not None:
            translation_logger.close()
        if previous_handler is not None:
            signal.signal(signal.SIGINT, previous_handler)


if __name__ == "__main__":
    sys.exit(main())
