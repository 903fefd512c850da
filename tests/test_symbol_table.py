# tests/test_symbol_table.py
from spi_core import (
    BuiltinTypeSymbol, ProcedureSymbol, ScopedSymbolTable, VarSymbol,
)


def test_new_table_has_builtin_types():
    scope = ScopedSymbolTable('global', 1)
    integer = scope.lookup('INTEGER')
    real = scope.lookup('REAL')
    assert isinstance(integer, BuiltinTypeSymbol)
    assert isinstance(real, BuiltinTypeSymbol)
    assert integer.name == 'INTEGER'
    assert scope.lookup('BOOLEAN') is None


def test_insert_and_lookup_are_case_insensitive():
    scope = ScopedSymbolTable('global', 1)
    sym = VarSymbol('Alpha', scope.lookup('INTEGER'))
    scope.insert(sym)
    assert scope.lookup('alpha') is sym
    assert scope.lookup('ALPHA') is sym
    assert 'aLpHa' in scope
    assert scope.lookup('integer').name == 'INTEGER'


def test_insert_stamps_scope_level():
    scope = ScopedSymbolTable('alpha', 3)
    sym = VarSymbol('x', scope.lookup('REAL'))
    scope.insert(sym)
    assert sym.scope_level == 3


def test_insert_overwrites_without_complaint():
    scope = ScopedSymbolTable('global', 1)
    first = VarSymbol('x', scope.lookup('INTEGER'))
    second = VarSymbol('X', scope.lookup('REAL'))
    scope.insert(first)
    scope.insert(second)
    assert scope.lookup('x') is second


def test_lookup_walks_enclosing_chain():
    outer = ScopedSymbolTable('global', 1)
    middle = ScopedSymbolTable('alpha', 2, outer)
    inner = ScopedSymbolTable('beta', 3, middle)
    proc = ProcedureSymbol('alpha')
    outer.insert(proc)
    assert inner.lookup('alpha') is proc
    assert inner.lookup('gamma') is None


def test_current_scope_only_does_not_reach_parent():
    outer = ScopedSymbolTable('global', 1)
    inner = ScopedSymbolTable('alpha', 2, outer)
    outer.insert(VarSymbol('x', outer.lookup('INTEGER')))
    assert inner.lookup('x', current_scope_only=True) is None
    assert inner.lookup('x') is not None


def test_nested_scope_hides_outer_symbol():
    outer = ScopedSymbolTable('global', 1)
    inner = ScopedSymbolTable('alpha', 2, outer)
    outer_x = VarSymbol('x', outer.lookup('INTEGER'))
    inner_x = VarSymbol('x', inner.lookup('REAL'))
    outer.insert(outer_x)
    inner.insert(inner_x)
    assert inner.lookup('x') is inner_x
    assert outer.lookup('x') is outer_x


def test_str_dump_names_the_scope():
    outer = ScopedSymbolTable('global', 1)
    inner = ScopedSymbolTable('alpha', 2, outer)
    inner.insert(VarSymbol('x', inner.lookup('INTEGER')))
    dump = str(inner)
    assert 'alpha' in dump
    assert 'global' in dump
    assert 'VarSymbol(name=x, type=INTEGER)' in dump
