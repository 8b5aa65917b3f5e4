import pytest

from elfext.machine import X86
from elfext.program import Program


@pytest.fixture
def program() -> Program:
    return Program("test", X86)


@pytest.fixture
def locked_program(program):
    with program.exclusive_access():
        yield program


@pytest.fixture
def memory(locked_program):
    return locked_program.memory


@pytest.fixture
def addr(program):
    return program.get_address
