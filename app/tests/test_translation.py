#!/usr/bin/env python3
"""
Tests for XLIFF document translation in XliffBatchTranslator.

This module tests the per-file workflow including:
- Target creation, target-language stamping and skip policy
- Placeholder and inline markup preservation
- Passthrough when no translation validates
- The run-wide cache, progress reporting and cancellation
"""

import os
import shutil
import sys
import tempfile
import threading
import unittest
from pathlib import Path
from unittest.mock import MagicMock

from lxml import etree

# Add parent directory to path for module import
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from XliffBatchTranslator import (
    XLIFF_NS,
    TranslationCancelled,
    TranslationStats,
    XliffTranslateOptions,
    XliffTranslator,
    normalize_whitespace,
)
from llm_provider import TranslationResult
from translation_cache import TranslationCache

XLIFF_TEMPLATE = """<?xml version="1.0" encoding="utf-8"?>
<xliff version="1.2" xmlns="urn:oasis:names:tc:xliff:document:1.2">
  <file source-language="en" datatype="plaintext" original="app">
    <body>
{units}
    </body>
  </file>
</xliff>
"""

NSMAP = {"x": XLIFF_NS}


def fake_translate(text, target_language, **kwargs):
    """Pretend-translate by tagging the text; keeps every token intact."""
    return TranslationResult.success(f"[{target_language}] {text}")


class XliffTestCase(unittest.TestCase):
    """Shared helpers for file based tests."""

    def setUp(self):
        self.temp_dir = Path(tempfile.mkdtemp())
        self.client = MagicMock()
        self.client.translate.side_effect = fake_translate
        self.translation_logger = MagicMock()

    def tearDown(self):
        shutil.rmtree(self.temp_dir)

    def make_translator(self, **option_overrides):
        options = XliffTranslateOptions(
            target_language="Spanish", target_language_code="es", **option_overrides
        )
        return XliffTranslator(
            self.client,
            options,
            cache=TranslationCache(),
            translation_logger=self.translation_logger,
        )

    def write_xliff(self, units: str, name: str = "in.xlf") -> Path:
        path = self.temp_dir / name
        path.write_text(XLIFF_TEMPLATE.format(units=units), encoding="utf-8")
        return path

    def translate(self, units: str, **option_overrides):
        translator = self.make_translator(**option_overrides)
        input_path = self.write_xliff(units)
        output_path = self.temp_dir / "out" / "in.xlf"
        stats = translator.translate_file(input_path, output_path)
        return stats, etree.parse(str(output_path))

    @staticmethod
    def unit(tree, unit_id):
        return tree.xpath(f"//x:trans-unit[@id='{unit_id}']", namespaces=NSMAP)[0]

    @staticmethod
    def target(tree, unit_id):
        found = tree.xpath(
            f"//x:trans-unit[@id='{unit_id}']/x:target", namespaces=NSMAP
        )
        return found[0] if found else None


class TestTranslateFile(XliffTestCase):
    """Tests for the basic per-unit workflow."""

    def test_creates_missing_target_after_source(self):
        stats, tree = self.translate(
            '<trans-unit id="u1"><source>Hello</source><note>greeting</note></trans-unit>'
        )

        unit = self.unit(tree, "u1")
        children = [etree.QName(child).localname for child in unit]
        self.assertEqual(children, ["source", "target", "note"])
        self.assertEqual(self.target(tree, "u1").text, "[Spanish] Hello")
        self.assertEqual(stats.translated_count, 1)
        self.assertEqual(stats.total_trans_units, 1)

    def test_stamps_target_language(self):
        _, tree = self.translate('<trans-unit id="u1"><source>Hello</source></trans-unit>')
        file_element = tree.find(f"{{{XLIFF_NS}}}file")
        self.assertEqual(file_element.get("target-language"), "es")
        self.assertEqual(file_element.get("source-language"), "en")

    def test_fills_empty_target(self):
        stats, tree = self.translate(
            '<trans-unit id="u1"><source>Hello</source><target>  </target></trans-unit>'
        )
        self.assertEqual(self.target(tree, "u1").text, "[Spanish] Hello")
        self.assertEqual(stats.translated_count, 1)

    def test_skips_translated_target(self):
        stats, tree = self.translate(
            '<trans-unit id="u1"><source>Hello</source><target>Hola</target></trans-unit>'
        )

        self.assertEqual(self.target(tree, "u1").text, "Hola")
        self.assertEqual(stats.skipped_count, 1)
        self.client.translate.assert_not_called()
        self.translation_logger.skipped.assert_called_once()

    def test_skips_unit_without_source(self):
        stats, tree = self.translate('<trans-unit id="u1"><note>orphan</note></trans-unit>')

        self.assertEqual(stats.skipped_count, 1)
        self.assertIsNone(self.target(tree, "u1"))
        args = self.translation_logger.skipped.call_args.args
        self.assertEqual(args[1], "u1")
        self.assertEqual(args[2], "No source element")

    def test_skips_blank_source(self):
        stats, _ = self.translate('<trans-unit id="u1"><source>   </source></trans-unit>')

        self.assertEqual(stats.skipped_count, 1)
        self.assertEqual(stats.translated_count, 0)
        self.client.translate.assert_not_called()

    def test_placeholders_survive(self):
        self.client.translate.side_effect = None
        self.client.translate.return_value = TranslationResult.success(
            "¿Eliminar __XLF_PH_0__ elemento __XLF_PH_1__?"
        )

        stats, tree = self.translate(
            '<trans-unit id="u1"><source>Delete #[Shared.Filters] item {0}?</source></trans-unit>'
        )

        self.assertEqual(
            self.target(tree, "u1").text, "¿Eliminar #[Shared.Filters] elemento {0}?"
        )
        sent_text = self.client.translate.call_args.args[0]
        self.assertEqual(sent_text, "Delete __XLF_PH_0__ item __XLF_PH_1__?")
        self.assertEqual(stats.translated_count, 1)

    def test_inline_markup_is_rehydrated(self):
        self.client.translate.side_effect = None
        self.client.translate.return_value = TranslationResult.success(
            "Haga clic __XLF_TAG_0__ ahora"
        )

        _, tree = self.translate(
            '<trans-unit id="u1"><source>Click <g id="1">here</g> now</source></trans-unit>'
        )

        target = self.target(tree, "u1")
        self.assertEqual(target.text, "Haga clic ")
        self.assertEqual(target[0].tag, f"{{{XLIFF_NS}}}g")
        self.assertEqual(target[0].get("id"), "1")
        self.assertEqual(target[0].text, "here")
        self.assertEqual(target[0].tail, " ahora")

    def test_dropped_markup_token_falls_back_to_source(self):
        """Both attempts lose the token, so the unit keeps its source content."""
        self.client.translate.side_effect = None
        self.client.translate.return_value = TranslationResult.success("Haga clic aquí")

        stats, tree = self.translate(
            '<trans-unit id="u1"><source>Click <b>here</b></source></trans-unit>'
        )

        target = self.target(tree, "u1")
        self.assertEqual(target.text, "Click ")
        self.assertEqual(etree.QName(target[0]).localname, "b")
        self.assertEqual(target[0].text, "here")
        self.assertEqual(self.client.translate.call_count, 2)
        self.assertEqual(stats.failure_count, 1)
        self.assertEqual(stats.translated_count, 0)
        self.translation_logger.failed.assert_called_once()

    def test_gateway_exception_does_not_abort_file(self):
        self.client.translate.side_effect = [
            RuntimeError("connection reset"),
            RuntimeError("connection reset"),
            TranslationResult.success("Adiós"),
        ]

        stats, tree = self.translate(
            '<trans-unit id="u1"><source>Hello</source></trans-unit>\n'
            '<trans-unit id="u2"><source>Goodbye</source></trans-unit>'
        )

        self.assertEqual(self.target(tree, "u1").text, "Hello")
        self.assertEqual(self.target(tree, "u2").text, "Adiós")
        self.assertEqual(stats.failure_count, 1)
        self.assertEqual(stats.translated_count, 1)

    def test_comments_in_source_are_kept(self):
        self.client.translate.side_effect = None
        self.client.translate.return_value = TranslationResult.success(
            "Hola__XLF_TAG_0__mundo"
        )

        _, tree = self.translate(
            '<trans-unit id="u1"><source>Hello<!-- keep -->world</source></trans-unit>'
        )

        target = self.target(tree, "u1")
        self.assertEqual(target.text, "Hola")
        self.assertEqual(target[0].tag, etree.Comment)
        self.assertEqual(target[0].text, " keep ")
        self.assertEqual(target[0].tail, "mundo")

    def test_output_declaration_and_whitespace(self):
        translator = self.make_translator()
        input_path = self.write_xliff(
            '      <trans-unit id="u1">\n        <source>Hello</source>\n      </trans-unit>'
        )
        output_path = self.temp_dir / "nested" / "dir" / "out.xlf"

        translator.translate_file(input_path, output_path)

        content = output_path.read_text(encoding="utf-8")
        self.assertTrue(content.startswith('<?xml version="1.0" encoding="utf-8"?>'))
        self.assertIn("<source>Hello</source>\n        <target>", content)


class TestSkipPolicy(XliffTestCase):
    """Tests for the same-as-source translation policy."""

    UNIT = (
        '<trans-unit id="u1"><source>Save  all\n files</source>'
        "<target>Save all files</target></trans-unit>"
    )

    def test_same_as_source_is_translated_by_default(self):
        stats, tree = self.translate(self.UNIT)

        self.assertEqual(stats.translated_count, 1)
        self.assertTrue(self.target(tree, "u1").text.startswith("[Spanish]"))

    def test_same_as_source_is_skipped_when_disabled(self):
        stats, tree = self.translate(
            self.UNIT, translate_if_target_missing_or_same_as_source=False
        )

        self.assertEqual(stats.skipped_count, 1)
        self.assertEqual(self.target(tree, "u1").text, "Save all files")
        self.client.translate.assert_not_called()

    def test_missing_target_is_translated_when_disabled(self):
        stats, _ = self.translate(
            '<trans-unit id="u1"><source>Save</source></trans-unit>',
            translate_if_target_missing_or_same_as_source=False,
        )
        self.assertEqual(stats.translated_count, 1)

    def test_normalize_whitespace(self):
        self.assertEqual(normalize_whitespace("  a\n\tb  c "), "a b c")
        self.assertEqual(normalize_whitespace(None), "")


class TestTranslationCacheUse(XliffTestCase):
    """Tests for the run-wide cache."""

    UNITS = (
        '<trans-unit id="u1"><source>Save {0}</source></trans-unit>\n'
        '<trans-unit id="u2"><source>Save {0}</source></trans-unit>'
    )

    def test_identical_units_call_gateway_once(self):
        stats, tree = self.translate(self.UNITS)

        self.assertEqual(self.client.translate.call_count, 1)
        self.assertEqual(self.target(tree, "u1").text, self.target(tree, "u2").text)
        self.assertEqual(self.target(tree, "u1").text, "[Spanish] Save {0}")
        self.assertEqual(stats.cache_hit_count, 1)
        self.assertEqual(stats.translated_count, 2)
        self.translation_logger.cached.assert_called_once()

    def test_cache_is_shared_across_files(self):
        translator = self.make_translator()
        first = self.write_xliff(self.UNITS, "a.xlf")
        second = self.write_xliff(self.UNITS, "b.xlf")

        translator.translate_file(first, self.temp_dir / "out" / "a.xlf")
        stats = translator.translate_file(second, self.temp_dir / "out" / "b.xlf")

        self.assertEqual(self.client.translate.call_count, 1)
        self.assertEqual(stats.cache_hit_count, 2)

    def test_passthrough_is_cached(self):
        self.client.translate.side_effect = None
        self.client.translate.return_value = TranslationResult.failure("HTTP 500")

        stats, tree = self.translate(self.UNITS)

        # Two attempts for the first unit, none for the second.
        self.assertEqual(self.client.translate.call_count, 2)
        self.assertEqual(self.target(tree, "u2").text, "Save {0}")
        self.assertEqual(stats.cache_hit_count, 1)

    def test_cached_passthrough_counts_as_failure(self):
        """A hit on untranslated text must not be reported as translated."""
        self.client.translate.side_effect = None
        self.client.translate.return_value = TranslationResult.failure("HTTP 500")

        stats, _ = self.translate(self.UNITS)

        self.assertEqual(stats.translated_count, 0)
        self.assertEqual(stats.failure_count, 2)
        self.assertEqual(stats.cache_hit_count, 1)
        self.translation_logger.cached.assert_not_called()
        self.assertEqual(self.translation_logger.failed.call_count, 2)
        self.assertEqual(
            self.translation_logger.failed.call_args.args[2],
            "Cache hit on untranslated text",
        )

    def test_cache_disabled(self):
        stats, _ = self.translate(self.UNITS, use_cache=False)

        self.assertEqual(self.client.translate.call_count, 2)
        self.assertEqual(stats.cache_hit_count, 0)

    def test_near_identical_text_is_not_a_hit(self):
        self.translate(
            '<trans-unit id="u1"><source>Save</source></trans-unit>\n'
            '<trans-unit id="u2"><source>Save </source></trans-unit>'
        )
        self.assertEqual(self.client.translate.call_count, 2)


class TestProgressAndCancellation(XliffTestCase):
    """Tests for progress reporting, cancellation and counting."""

    UNITS = (
        '<trans-unit id="u1"><source>One</source></trans-unit>\n'
        '<trans-unit id="u2"><source>Two</source><target>Dos</target></trans-unit>'
    )

    def test_progress_reported_per_unit(self):
        progress = MagicMock()
        translator = self.make_translator()

        translator.translate_file(
            self.write_xliff(self.UNITS), self.temp_dir / "out.xlf", progress=progress
        )

        self.assertEqual(
            [c.args for c in progress.call_args_list], [(1, 2), (2, 2)]
        )

    def test_cancellation_discards_file(self):
        cancel_event = threading.Event()
        cancel_event.set()
        translator = self.make_translator()
        output_path = self.temp_dir / "out.xlf"

        with self.assertRaises(TranslationCancelled):
            translator.translate_file(
                self.write_xliff(self.UNITS), output_path, cancel_event=cancel_event
            )

        self.assertFalse(output_path.exists())
        self.client.translate.assert_not_called()

    def test_count_trans_units(self):
        path = self.write_xliff(self.UNITS)
        self.assertEqual(XliffTranslator.count_trans_units(path), 2)

    def test_malformed_xml_raises(self):
        path = self.temp_dir / "broken.xlf"
        path.write_text("<xliff><file>", encoding="utf-8")
        translator = self.make_translator()

        with self.assertRaises(etree.XMLSyntaxError):
            translator.translate_file(path, self.temp_dir / "out.xlf")


class TestStatsAndOptions(unittest.TestCase):
    def test_merge(self):
        overall = TranslationStats()
        overall.merge(TranslationStats(3, 1, 1, 0, 1))
        overall.merge(TranslationStats(2, 2, 0, 1, 0))
        self.assertEqual(overall, TranslationStats(5, 3, 1, 1, 1))

    def test_options_defaults(self):
        options = XliffTranslateOptions(target_language="German")
        self.assertEqual(options.target_language_code, "German")
        self.assertTrue(options.translate_if_target_missing_or_same_as_source)
        self.assertTrue(options.use_cache)
        self.assertEqual(options.temperature, 0.0)
        self.assertEqual([p.max_tokens for p in options.attempt_policies], [256, 64])

    def test_options_validation(self):
        with self.assertRaises(ValueError):
            XliffTranslateOptions(target_language="")
        with self.assertRaises(ValueError):
            XliffTranslateOptions(target_language="German", attempt_policies=[])


if __name__ == "__main__":
    unittest.main()
