import base64

from quotecase.pipeline.correspondence import extract_plain_text, strip_html


class TestExtractPlainText:
    """Body normalization of raw email payloads."""

    def test_plain_text_passthrough(self):
        assert extract_plain_text("Hello\nPlease quote 1x20DV") == "Hello\nPlease quote 1x20DV"

    def test_empty_body(self):
        assert extract_plain_text(None) == ""
        assert extract_plain_text("") == ""

    def test_truncates_to_limit(self):
        assert extract_plain_text("a" * 50, max_chars=10) == "a" * 10

    def test_bare_base64_body_is_decoded(self):
        raw = base64.b64encode("Bonjour, merci de coter 2 x 40HC.".encode("utf-8")).decode("ascii")
        assert extract_plain_text(raw) == "Bonjour, merci de coter 2 x 40HC."

    def test_base64_html_body_is_stripped(self):
        html_body = "<html><body><p>Hello &amp; welcome</p></body></html>"
        raw = base64.b64encode(html_body.encode("utf-8")).decode("ascii")
        assert extract_plain_text(raw) == "Hello & welcome"

    def test_multipart_prefers_plain_and_skips_images(self):
        body = (
            'Content-Type: multipart/alternative; boundary="XYZ"\n\n'
            "--XYZ\nContent-Type: image/png\nContent-Transfer-Encoding: base64\n\niVBORw0KGgo=\n"
            '--XYZ\nContent-Type: text/html; charset="utf-8"\n\n<p>HTML version</p>\n'
            '--XYZ\nContent-Type: text/plain; charset="utf-8"\n'
            "Content-Transfer-Encoding: quoted-printable\n\nPlain version caf=C3=A9\n"
            "--XYZ--\n"
        )
        assert extract_plain_text(body) == "Plain version café"

    def test_multipart_html_only_is_stripped(self):
        body = (
            'Content-Type: multipart/alternative; boundary="B2"\n\n'
            "--B2\nContent-Type: text/html\n\n<div>Port of loading: Antwerp</div><br>Thanks\n"
            "--B2--"
        )
        text = extract_plain_text(body)
        assert "Port of loading: Antwerp" in text
        assert "<div>" not in text

    def test_flattened_headers_are_recovered(self):
        body = (
            'Content-Type: multipart/alternative; boundary="B1" '
            "--B1 Content-Type: text/plain; charset=utf-8 Hello from flattened --B1--"
        )
        assert extract_plain_text(body) == "Hello from flattened"

    def test_garbage_never_raises(self):
        body = (
            'Content-Type: multipart/mixed; boundary="Q"\n--Q\nContent-Type: text/plain\n'
            "Content-Transfer-Encoding: base64\n\n@@@notbase64@@@\n--Q--"
        )
        assert isinstance(extract_plain_text(body), str)


class TestStripHtml:
    def test_drops_scripts_and_styles(self):
        text = strip_html("<style>p{color:red}</style><script>alert(1)</script><p>Cargo ready</p>")
        assert text == "Cargo ready"

    def test_block_tags_become_lines(self):
        text = strip_html("<div>Weight:&nbsp;5 t</div><table><tr><td>Volume</td><td><b>20</b> cbm</td></tr></table>")

        assert text.splitlines()[0] == "Weight: 5 t"
        assert "Volume" in text
        assert "<" not in text
