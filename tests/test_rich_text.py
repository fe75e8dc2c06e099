import os
import sys
import unittest

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from phystutor.rich_text import (
    Span,
    is_list_line,
    looks_like_block_equation,
    looks_like_inline_equation,
    parse_inline,
    render,
)


class TestRender(unittest.TestCase):
    def test_heading_paragraph_equation(self):
        blocks = render("### Title\n\nSome **bold** and *italic* text\n\nF = ma")

        self.assertEqual([b.kind for b in blocks], ["heading", "paragraph", "equation"])
        self.assertEqual(blocks[0].level, 3)
        self.assertEqual(blocks[0].text, "Title")
        self.assertIn(Span("bold", "bold"), blocks[1].spans)
        self.assertIn(Span("italic", "italic"), blocks[1].spans)
        self.assertEqual(blocks[2].text, "F = ma")

    def test_heading_levels(self):
        blocks = render("# One\n\n## Two\n\n### Three")
        self.assertEqual([(b.kind, b.level, b.text) for b in blocks], [
            ("heading", 1, "One"),
            ("heading", 2, "Two"),
            ("heading", 3, "Three"),
        ])

    def test_rules(self):
        for token in ("---", "***", "___"):
            with self.subTest(token=token):
                self.assertEqual([b.kind for b in render(f"Intro\n\n{token}\n\nOutro")], ["paragraph", "rule", "paragraph"])

    def test_input_is_normalized_first(self):
        blocks = render(r"KE = \frac{1}{2}mv^2")
        self.assertEqual(len(blocks), 1)
        self.assertEqual(blocks[0].kind, "equation")
        self.assertEqual(blocks[0].text, "KE = ½mv²")

    def test_bullet_and_numbered_lists(self):
        blocks = render("Steps:\n- find the forces\n2. sum them **up**")

        self.assertEqual(len(blocks), 1)
        self.assertEqual(blocks[0].kind, "list")
        items = blocks[0].items
        self.assertEqual([i.kind for i in items], ["text", "bullet", "numbered"])
        self.assertEqual(items[1].spans, (Span("text", "find the forces"),))
        self.assertEqual(items[2].label, "2.")
        self.assertIn(Span("bold", "up"), items[2].spans)

    def test_equation_lines_split_out_of_paragraph(self):
        text = "We know the speed of the cart.\nv² = 2ad\nSo we can solve for distance."
        blocks = render(text)

        self.assertEqual([b.kind for b in blocks], ["paragraph", "equation", "paragraph"])
        self.assertEqual(blocks[1].text, "v² = 2ad")

    def test_sentence_with_equals_stays_text(self):
        text = "The answer is the same because momentum = constant in the whole collision process here."
        blocks = render(text)
        self.assertEqual([b.kind for b in blocks], ["paragraph"])

    def test_crlf_and_blank_input(self):
        self.assertEqual(render(""), [])
        self.assertEqual(render(None), [])
        blocks = render("Line one\r\n\r\nLine two")
        self.assertEqual([b.kind for b in blocks], ["paragraph", "paragraph"])

    def test_to_dict_shapes(self):
        heading, equation = render("## Forces\n\nF = ma")
        self.assertEqual(heading.to_dict()["level"], 2)
        self.assertEqual(heading.to_dict()["lines"], [[{"kind": "text", "text": "Forces"}]])
        self.assertEqual(equation.to_dict(), {"kind": "equation", "text": "F = ma"})


class TestParseInline(unittest.TestCase):
    def test_no_markup(self):
        self.assertEqual(parse_inline("plain"), (Span("text", "plain"),))

    def test_mixed_spans(self):
        spans = parse_inline("use `F=ma` with **care** and *units* now")
        self.assertEqual(spans, (
            Span("text", "use "),
            Span("code", "F=ma"),
            Span("text", " with "),
            Span("bold", "care"),
            Span("text", " and "),
            Span("italic", "units"),
            Span("text", " now"),
        ))

    def test_adjacent_bold_spans(self):
        spans = parse_inline("**a****b**")
        self.assertEqual(spans, (Span("bold", "a"), Span("bold", "b")))

    def test_unmatched_marker_is_text(self):
        self.assertEqual(parse_inline("2 * 3"), (Span("text", "2 * 3"),))


class TestPredicates(unittest.TestCase):
    def test_block_equation(self):
        self.assertTrue(looks_like_block_equation("F = ma"))
        self.assertTrue(looks_like_block_equation("v = 3.0 m/s, t = 2 s"))
        self.assertFalse(looks_like_block_equation("The force is = to mass times acceleration"))
        self.assertFalse(looks_like_block_equation("No equals sign here"))

    def test_inline_equation(self):
        self.assertTrue(looks_like_inline_equation("KE = ½mv²"))
        self.assertTrue(looks_like_inline_equation("p = m × v"))
        self.assertFalse(looks_like_inline_equation("F = ma"))
        self.assertFalse(looks_like_inline_equation("x² = a and y² = b"))

    def test_list_lines(self):
        self.assertTrue(is_list_line("- item"))
        self.assertTrue(is_list_line("• item"))
        self.assertTrue(is_list_line("* item"))
        self.assertTrue(is_list_line("12. item"))
        self.assertFalse(is_list_line("-item"))
        self.assertFalse(is_list_line("1.5 m"))


if __name__ == "__main__":
    unittest.main()
