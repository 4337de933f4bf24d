import pytest

from audisell.services import slides


def test_font_size_thresholds():
    assert slides.font_size_for("x" * 10) == 56
    assert slides.font_size_for("x" * 100) == 48
    assert slides.font_size_for("x" * 200) == 36
    assert slides.font_size_for("x" * 300) == 32


def test_wrap_text_respects_width():
    lines = slides.wrap_text("uma frase com várias palavras para quebrar", font_size=40, max_width=300)
    assert len(lines) > 1
    assert all(len(line) * 40 * 0.5 <= 300 or " " not in line for line in lines)
    assert " ".join(lines) == "uma frase com várias palavras para quebrar"


def test_wrap_text_keeps_long_word_on_its_own_line():
    assert slides.wrap_text("supercalifragilistic", font_size=100, max_width=50) == ["supercalifragilistic"]


def test_render_slide_dimensions_and_counter():
    svg = slides.render_slide("Olá", 2, 5, format="STORY", style="WHITE_BLACK")
    assert 'width="1080" height="1920"' in svg
    assert 'fill="#FFFFFF"' in svg
    assert ">2/5</text>" in svg
    assert "DEMO" not in svg


def test_render_slide_escapes_markup():
    svg = slides.render_slide('Use <b> & "aspas"', 1, 1)
    assert "&lt;b&gt;" in svg
    assert "&amp;" in svg
    assert "&quot;aspas&quot;" in svg
    assert "<b>" not in svg


def test_render_slide_watermark():
    svg = slides.render_slide("Texto", 1, 1, has_watermark=True)
    assert "Audisell" in svg
    assert "DEMO" in svg


def test_signature_slide_is_bold():
    svg = slides.render_slide("@autor", 6, 6, is_signature=True)
    assert 'font-weight="700">@autor' in svg


@pytest.mark.parametrize("kwargs", [{"format": "BANNER"}, {"style": "NEON"}])
def test_render_slide_rejects_unknown_layout(kwargs):
    with pytest.raises(ValueError):
        slides.render_slide("x", 1, 1, **kwargs)


def test_render_carousel_numbers_every_slide():
    script = {
        "slides": [
            {"number": 1, "type": "HOOK", "text": "Um"},
            {"number": 2, "type": "CONTENT", "text": "Dois"},
            {"number": 3, "type": "SIGNATURE", "text": "@eu"},
        ]
    }
    svgs = slides.render_carousel(script, "POST_PORTRAIT", "BLACK_WHITE")
    assert len(svgs) == 3
    assert ">1/3</text>" in svgs[0]
    assert ">3/3</text>" in svgs[2]
    assert 'height="1350"' in svgs[1]


def test_render_carousel_without_slides_fails():
    with pytest.raises(ValueError):
        slides.render_carousel({"slides": []})
