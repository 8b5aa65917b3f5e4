import threading

import pytest

from elfext.exceptions import ContextChangeError, LockError
from elfext.machine import Register
from elfext.memory import RegisterValue


@pytest.fixture
def ebx(program):
    return program.get_register("EBX")


@pytest.fixture
def context(locked_program):
    return locked_program.memory.context


def ranges(context, register):
    return [
        (address_range.min_address.offset, address_range.max_address.offset, value)
        for address_range, value in context.get_value_ranges(register)
    ]


def test_paint_and_query(context, ebx, addr):
    context.set_register_value(addr(0x1000), addr(0x100F), RegisterValue(ebx, 0x3000))
    assert context.get_register_value(ebx, addr(0x1000)) == RegisterValue(ebx, 0x3000)
    assert context.get_register_value(ebx, addr(0x100F)).value == 0x3000
    assert context.get_register_value(ebx, addr(0x1010)) is None
    assert context.get_registers_with_values() == [ebx]


def test_paint_is_idempotent(context, ebx, addr):
    value = RegisterValue(ebx, 0x3000)
    context.set_register_value(addr(0x1000), addr(0x100F), value)
    context.set_register_value(addr(0x1000), addr(0x100F), value)
    context.set_register_value(addr(0x1004), addr(0x1008), value)
    assert ranges(context, ebx) == [(0x1000, 0x100F, 0x3000)]


def test_adjacent_ranges_merge(context, ebx, addr):
    value = RegisterValue(ebx, 0x3000)
    context.set_register_value(addr(0x1010), addr(0x101F), value)
    context.set_register_value(addr(0x1000), addr(0x100F), value)
    assert ranges(context, ebx) == [(0x1000, 0x101F, 0x3000)]


def test_conflicting_value(context, ebx, addr):
    context.set_register_value(addr(0x1000), addr(0x100F), RegisterValue(ebx, 0x3000))
    with pytest.raises(ContextChangeError):
        context.set_register_value(
            addr(0x100F), addr(0x1020), RegisterValue(ebx, 0x4000)
        )
    context.set_register_value(addr(0x1010), addr(0x1020), RegisterValue(ebx, 0x4000))
    assert ranges(context, ebx) == [
        (0x1000, 0x100F, 0x3000),
        (0x1010, 0x1020, 0x4000),
    ]


def test_registers_are_independent(context, ebx, program, addr):
    eax = program.get_register("EAX")
    context.set_register_value(addr(0x1000), addr(0x100F), RegisterValue(ebx, 1))
    context.set_register_value(addr(0x1000), addr(0x100F), RegisterValue(eax, 2))
    assert context.get_register_value(eax, addr(0x1000)).value == 2
    assert context.get_register_value(ebx, addr(0x1000)).value == 1


def test_remove_register_value(context, ebx, addr):
    context.set_register_value(addr(0x1000), addr(0x100F), RegisterValue(ebx, 1))
    context.remove_register_value(addr(0x1004), addr(0x1007), ebx)
    assert ranges(context, ebx) == [(0x1000, 0x1003, 1), (0x1008, 0x100F, 1)]
    context.remove_register_value(addr(0x1000), addr(0x100F), ebx)
    assert context.get_registers_with_values() == []


def test_invalid_range(context, ebx, addr):
    with pytest.raises(ValueError):
        context.set_register_value(addr(0x100F), addr(0x1000), RegisterValue(ebx, 1))


def test_value_must_fit_register(ebx):
    with pytest.raises(ValueError):
        RegisterValue(ebx, 1 << 32)
    with pytest.raises(ValueError):
        RegisterValue(ebx, -1)


def test_foreign_register(context, addr):
    with pytest.raises(ValueError):
        context.set_register_value(
            addr(0x1000), addr(0x100F), RegisterValue(Register("RAX", 64), 1)
        )


def test_paint_requires_lock(program, ebx, addr):
    with pytest.raises(LockError):
        program.memory.set_register_value(
            addr(0x1000), addr(0x100F), RegisterValue(ebx, 1)
        )


def test_lock_is_reentrant(program):
    with program.exclusive_access():
        with program.exclusive_access(blocking=False):
            assert program.has_exclusive_access()
        assert program.has_exclusive_access()
    assert not program.has_exclusive_access()


def test_lock_held_by_another_thread(program):
    acquired = threading.Event()
    release = threading.Event()

    def hold():
        with program.exclusive_access():
            acquired.set()
            release.wait(5)

    holder = threading.Thread(target=hold)
    holder.start()
    try:
        assert acquired.wait(5)
        assert not program.has_exclusive_access()
        with pytest.raises(LockError):
            with program.exclusive_access(blocking=False):
                pass
    finally:
        release.set()
        holder.join()
