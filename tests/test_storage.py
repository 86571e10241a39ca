"""Tests for local upload storage."""

from __future__ import annotations

import io

import pytest
from werkzeug.datastructures import FileStorage

import storage
from errors import ValidationError


def _pdf(content=b"%PDF-1.4 body", name="notes.pdf", mimetype="application/pdf"):
    return FileStorage(stream=io.BytesIO(content), filename=name, content_type=mimetype)


class TestKeys:
    def test_build_key_layout(self):
        key = storage.build_key("notes", 7, "../My Notes.pdf", subdir="thumbnails")
        bucket, user, subdir, name = key.split("/")
        assert (bucket, user, subdir) == ("notes", "7", "thumbnails")
        assert " " not in name
        assert name.endswith(".pdf")

    def test_save_resolve_delete(self, app):
        with app.app_context():
            key = storage.save(_pdf(), storage.build_key("papers", 1, "exam.pdf"))
            path = storage.resolve(key)
            assert path is not None
            assert path.read_bytes() == b"%PDF-1.4 body"
            storage.delete(key)
            assert storage.resolve(key) is None

    def test_resolve_rejects_traversal(self, app, tmp_path):
        (tmp_path / "secret.txt").write_text("nope")
        with app.app_context():
            assert storage.resolve("../secret.txt") is None
            assert storage.resolve("") is None

    def test_delete_user_files(self, app):
        with app.app_context():
            keys = [
                storage.save(_pdf(), storage.build_key("notes", 3, "a.pdf")),
                storage.save(_pdf(), storage.build_key("papers", 3, "b.pdf")),
            ]
            kept = storage.save(_pdf(), storage.build_key("notes", 4, "c.pdf"))
            storage.delete_user_files(3)
            assert all(storage.resolve(k) is None for k in keys)
            assert storage.resolve(kept) is not None


class TestValidation:
    def test_valid_pdf_returns_size(self, app):
        with app.app_context():
            assert storage.validate_pdf(_pdf(b"%PDF" + b"x" * 96)) == 100

    @pytest.mark.parametrize("upload", [
        None,
        _pdf(mimetype="text/plain"),
        _pdf(content=b"MZ not a pdf"),
    ])
    def test_invalid_pdf(self, app, upload):
        with app.app_context():
            with pytest.raises(ValidationError):
                storage.validate_pdf(upload)

    def test_oversized_pdf(self, app):
        app.config["MAX_NOTE_FILE_SIZE"] = 10
        with app.app_context():
            with pytest.raises(ValidationError, match="less than"):
                storage.validate_pdf(_pdf(b"%PDF" + b"x" * 20))

    def test_image_signature(self, app):
        png = FileStorage(io.BytesIO(b"\x89PNG\r\n"), filename="t.png", content_type="image/png")
        fake = FileStorage(io.BytesIO(b"GIF89a"), filename="t.png", content_type="image/png")
        storage.validate_image(png)
        with pytest.raises(ValidationError):
            storage.validate_image(fake)
