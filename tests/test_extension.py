from elftools.elf.constants import SH_FLAGS

from elfext.loader.base import PassResult
from elfext.loader.elf import ElfExtension, ElfHeader, ElfLoadHelper, ElfSectionHeader
from elfext.loader.elf.extend import (
    EXTENSIONS,
    ExtensionTag,
    default_got_plt,
    find_header_candidates,
    get_elf_extension,
    process_got_plt,
)
from elfext.loader.elf.extend.x86 import X86_32, X86_64
from elfext.machine import X86
from elfext.program import Program


class Recorder:
    def __init__(self, result=PassResult.COMPLETED):
        self.calls = []
        self.result = result

    def __call__(self, helper, is_cancelled):
        self.calls.append(helper)
        return self.result


def make_helper(e_machine="EM_386"):
    header = ElfHeader(
        e_machine,
        sections=[ElfSectionHeader(".got", 0x3000, 0x10, SH_FLAGS.SHF_ALLOC)],
    )
    return ElfLoadHelper(header, Program("libtest.so", X86))


def make_extension(accepts_context, processor=None):
    return ElfExtension(
        tag=ExtensionTag.X86_32,
        can_handle_header=lambda header: header.e_machine == "EM_386",
        can_handle_context=lambda helper: accepts_context,
        data_type_suffix="_test",
        process_got_plt=processor,
    )


def test_registry_order():
    assert EXTENSIONS == [X86_32, X86_64]


def test_header_candidates():
    assert find_header_candidates(make_helper().header) == [X86_32]
    assert find_header_candidates(make_helper("EM_ARM").header) == []


def test_context_check_picks_among_header_matches():
    rejecting = Recorder()
    accepting = Recorder()
    extensions = [
        make_extension(False, rejecting),
        make_extension(True, accepting),
    ]
    helper = make_helper()
    assert len(find_header_candidates(helper.header, extensions)) == 2
    assert get_elf_extension(helper, extensions) is extensions[1]

    default = Recorder()
    result = process_got_plt(helper, extensions=extensions, default_processor=default)
    assert result is PassResult.COMPLETED
    assert default.calls == [helper]
    assert rejecting.calls == []
    assert accepting.calls == [helper]


def test_default_pass_runs_first():
    order = []
    extensions = [
        make_extension(True, lambda helper, is_cancelled: order.append("extension")),
    ]

    def default(helper, is_cancelled):
        order.append("default")
        return PassResult.COMPLETED

    process_got_plt(make_helper(), extensions=extensions, default_processor=default)
    assert order == ["default", "extension"]


def test_no_matching_extension_runs_default_only():
    default = Recorder()
    helper = make_helper("EM_ARM")
    assert get_elf_extension(helper) is None
    assert process_got_plt(helper, default_processor=default) is PassResult.COMPLETED
    assert default.calls == [helper]


def test_extension_without_pass():
    default = Recorder(PassResult.SKIPPED)
    extensions = [make_extension(True)]
    result = process_got_plt(make_helper(), extensions=extensions, default_processor=default)
    assert result is PassResult.SKIPPED


def test_cancelled_default_pass_stops_dispatch():
    specialized = Recorder()
    extensions = [make_extension(True, specialized)]
    result = process_got_plt(
        make_helper(),
        extensions=extensions,
        default_processor=Recorder(PassResult.CANCELLED),
    )
    assert result is PassResult.CANCELLED
    assert specialized.calls == []


def test_default_got_plt():
    helper = make_helper()
    assert default_got_plt(helper, lambda: False) is PassResult.COMPLETED
    assert default_got_plt(helper, lambda: True) is PassResult.CANCELLED
    assert helper.messages == []
