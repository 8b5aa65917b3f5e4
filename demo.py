import sys

from loguru import logger

from elfext import ElfLoader, LoadOptions

logger.remove()
logger.add(sys.stderr, level="ERROR")


def describe_program(result):
    program = result.program
    print(f"{program!r}, extension: {result.extension or 'none'} ({result.result})")
    for block in program.memory:
        print(
            f"  {block.name:20} {block.range} "
            f"{'r' if block.is_read else '-'}"
            f"{'w' if block.is_write else '-'}"
            f"{'x' if block.is_execute else '-'}"
        )
    for register in program.memory.context.get_registers_with_values():
        for address_range, value in program.memory.context.get_value_ranges(register):
            print(f"  {register.name}={value:#x} over {address_range}")
    for message in result.helper.messages:
        print(f"  note: {message}")


if __name__ == "__main__":
    if len(sys.argv) < 2:
        print(f"Usage: {sys.argv[0]} <elf file> [image_base_in_hex]")
        exit(1)
    image_base = int(sys.argv[2], 16) if len(sys.argv) > 2 else None
    describe_program(ElfLoader(LoadOptions(image_base=image_base)).load(sys.argv[1]))
