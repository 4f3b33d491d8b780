"""
Tests for the sectioned console used by concurrent stack deletion.
"""
import io
import threading

from rich.console import Console

from cluster_provisioner import SectionConsole


def _console():
    out = io.StringIO()
    return SectionConsole(Console(file=out, force_terminal=False, width=80)), out


def test_sections_are_flushed_in_requested_order():
    console, out = _console()
    ready = threading.Barrier(2)

    def _worker(name):
        with console.section(name):
            ready.wait()
            console.print(f"{name} start")
            console.print(f"{name} done")

    threads = [threading.Thread(target=_worker, args=(name,)) for name in ("b", "a")]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    assert out.getvalue() == ""

    console.flush_sections(["a", "b", "missing"])

    assert out.getvalue() == "a start\na done\nb start\nb done\n"


def test_output_outside_a_section_is_printed_directly():
    console, out = _console()

    console.print("[bold]hello[/bold]")

    assert out.getvalue() == "hello\n"


def test_flushed_sections_are_dropped():
    console, out = _console()
    with console.section("a"):
        console.print("once")

    console.flush_sections(["a"])
    console.flush_sections(["a"])

    assert out.getvalue() == "once\n"
