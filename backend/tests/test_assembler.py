import io
import zipfile

import pytest

from app.services.archive.assembler import ArchiveAssembler, ArchivePackagingError


def test_same_name_twice_yields_two_files():
    assembler = ArchiveAssembler()
    first = assembler.add_bytes("uploads/report.pdf", b"one")
    second = assembler.add_bytes("uploads/report.pdf", b"two")
    third = assembler.add_bytes("uploads/report.pdf", b"three")
    assert (first, second, third) == ("uploads/report.pdf", "uploads/report_1.pdf", "uploads/report_2.pdf")
    assert assembler.read("uploads/report.pdf") == b"one"
    assert assembler.read("uploads/report_1.pdf") == b"two"


def test_repeated_text_writes_never_overwrite():
    assembler = ArchiveAssembler()
    assembler.add_text("notes.md", "first")
    assembler.add_text("notes.md", "second")
    assert assembler.names() == ["notes.md", "notes_1.md"]

    with zipfile.ZipFile(io.BytesIO(assembler.build_zip())) as zf:
        assert zf.namelist() == ["notes.md", "notes_1.md"]
        assert zf.read("notes.md").decode("utf-8").endswith("first")
        assert zf.read("notes_1.md").decode("utf-8").endswith("second")


def test_names_without_extension_and_in_other_directories():
    assembler = ArchiveAssembler()
    assert assembler.add_text("uploads/Makefile", "a") == "uploads/Makefile"
    assert assembler.add_text("uploads/Makefile", "b") == "uploads/Makefile_1"
    assert assembler.add_text("attachments/Makefile", "c") == "attachments/Makefile"


def test_collisions_are_shared_across_folders_of_one_assembler():
    assembler = ArchiveAssembler()
    first = assembler.folder("Chat", unique=True)
    second = assembler.folder("Chat", unique=True)
    assert (first.prefix, second.prefix) == ("Chat", "Chat_1")

    first.add_text("README.md", "a")
    second.add_text("README.md", "b")
    assert assembler.names() == ["Chat/README.md", "Chat_1/README.md"]


def test_markdown_gets_bom_other_files_do_not():
    assembler = ArchiveAssembler()
    assembler.add_text("README.md", "hi")
    assembler.add_text("data.csv", "a,b")
    assembler.add_json("original.json", {"name": "é"})
    assert assembler.read("README.md") == b"\xef\xbb\xbfhi"
    assert assembler.read("data.csv") == b"a,b"
    assert assembler.read("original.json").decode("utf-8") == '{\n  "name": "é"\n}'


def test_build_zip_round_trip():
    assembler = ArchiveAssembler(compression_level=6)
    folder = assembler.folder("conv")
    folder.add_text("responses/001_x_response.md", "body")
    folder.add_bytes("uploads/img.png", b"\x89PNG")

    with zipfile.ZipFile(io.BytesIO(assembler.build_zip())) as zf:
        assert zf.namelist() == ["conv/responses/001_x_response.md", "conv/uploads/img.png"]
        assert zf.getinfo("conv/uploads/img.png").compress_type == zipfile.ZIP_DEFLATED
        assert zf.read("conv/uploads/img.png") == b"\x89PNG"


def test_packaging_failure_is_fatal():
    assembler = ArchiveAssembler(compression_level=99)
    assembler.add_text("a.txt", "x" * 100)
    with pytest.raises(ArchivePackagingError):
        assembler.build_zip()
