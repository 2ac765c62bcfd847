from PIL import ImageFont

from scribe_printer.printing.render import (
    format_item_line,
    list_content,
    message_content,
    render_message_image,
    resolve_font,
    wrap_text,
)


def test_item_lines_carry_checked_marker():
    assert format_item_line({"text": "Milk", "checked": True}) == "[x] Milk"
    assert format_item_line({"text": " Eggs ", "checked": False}) == "[ ] Eggs"


def test_list_content_keeps_given_order():
    items = [{"text": "Bread", "checked": False}, {"text": "Jam", "checked": True}]
    assert list_content(" Groceries ", items) == {"title": "Groceries", "items": ["[ ] Bread", "[x] Jam"]}


def test_message_content_strips():
    assert message_content("  hi  ") == {"message": "hi"}


def test_wrap_respects_width_and_newlines():
    font = ImageFont.load_default()
    lines = wrap_text("one two three four five six seven\nsecond paragraph", font, 60)
    assert len(lines) > 2
    assert lines[-1].endswith("paragraph")
    for line in lines:
        bbox = font.getbbox(line)
        assert bbox[2] - bbox[0] <= 60 or " " not in line


def test_wrap_splits_overlong_words():
    font = ImageFont.load_default()
    lines = wrap_text("x" * 200, font, 50)
    assert len(lines) > 1
    assert "".join(lines) == "x" * 200


def test_wrap_empty():
    assert wrap_text("", ImageFont.load_default(), 100) == [""]


def test_render_message_image_dimensions():
    img = render_message_image("Dinner is in the oven", {"receipt_width": 384, "message_font_size": 24})
    assert img.mode == "L"
    assert img.size[0] == 384
    assert img.size[1] > 0
    # Something was drawn
    assert img.getextrema()[0] < 255


def test_resolve_font_falls_back_when_path_missing(tmp_path):
    font = resolve_font({"font_path": str(tmp_path / "missing.ttf")}, 20)
    assert hasattr(font, "getbbox") or hasattr(font, "getmask")
