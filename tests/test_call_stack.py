# tests/test_call_stack.py
from spi_core import ActivationRecord, ARType, CallStack


def test_push_peek_pop():
    stack = CallStack()
    program = ActivationRecord('Main', ARType.PROGRAM, 1)
    proc = ActivationRecord('alpha', ARType.PROCEDURE, 2)
    stack.push(program)
    stack.push(proc)
    assert len(stack) == 2
    assert stack.peek() is proc
    assert stack.pop() is proc
    assert stack.peek() is program
    assert stack.records == [program]


def test_empty_stack_returns_none():
    stack = CallStack()
    assert stack.peek() is None
    assert stack.pop() is None
    assert len(stack) == 0


def test_peek_gives_the_live_record():
    stack = CallStack()
    stack.push(ActivationRecord('Main', ARType.PROGRAM, 1))
    stack.peek().set('a', 5)
    assert stack.records[0].get('a') == 5


def test_activation_record_bindings():
    ar = ActivationRecord('alpha', ARType.PROCEDURE, 2)
    ar.set('a', 1)
    ar['b'] = 2.5
    ar.set('a', 3)
    assert ar.get('a') == 3
    assert ar['b'] == 2.5
    assert ar.get('missing') is None
    assert 'b' in ar
    assert 'missing' not in ar
    assert ar.members == {'a': 3, 'b': 2.5}


def test_records_are_bottom_to_top():
    stack = CallStack()
    names = ['Main', 'alpha', 'beta']
    for level, name in enumerate(names, start=1):
        stack.push(ActivationRecord(name, ARType.PROCEDURE, level))
    assert [ar.name for ar in stack.records] == names


def test_str_dump_lists_top_first():
    stack = CallStack()
    main = ActivationRecord('Main', ARType.PROGRAM, 1)
    main.set('x', 10)
    stack.push(main)
    stack.push(ActivationRecord('alpha', ARType.PROCEDURE, 2))
    dump = str(stack)
    assert dump.startswith('CALL STACK')
    assert dump.index('2: PROCEDURE alpha') < dump.index('1: PROGRAM Main')
    assert 'x' in dump
