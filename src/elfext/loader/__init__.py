"""Implementation of loaders - mechanisms that take a binary and populate the
memory model of a ``Program`` with it.

Besides copying the binary's contents into memory blocks, loaders annotate
the program with facts implied by the binary's format and architecture
conventions (e.g. register values known to hold across a code region).
"""
