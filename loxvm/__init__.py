"""A bytecode compiler and virtual machine for the Lox scripting language."""

__version__ = "0.1.0"