""" SPI core - scope resolution and execution for the Simple Pascal Interpreter """
import logging
import operator
from enum import Enum

logger = logging.getLogger(__name__)

# tracing switches, overridable per analyzer/interpreter instance
_SHOULD_LOG_SCOPE = False
_SHOULD_LOG_STACK = False
# deepest procedure call allowed before the run is aborted
_MAX_CALL_DEPTH = 100


def setup_logging(verbose, stream=None):
    """Send scope and stack traces to `stream` (stderr by default).

    Tracing itself is switched on with the `log_scope`/`log_stack` arguments
    of SemanticAnalyzer, Interpreter and run(). Calling this again replaces
    the handler installed by the previous call.
    """
    for handler in list(logger.handlers):
        if getattr(handler, '_spi_core', False):
            logger.removeHandler(handler)

    handler = logging.StreamHandler(stream)
    handler.setFormatter(logging.Formatter('{message}', style='{'))
    handler._spi_core = True
    logger.addHandler(handler)
    logger.setLevel(logging.INFO if verbose else logging.WARNING)
    return handler


def canonical(name):
    """Pascal identifiers are case-insensitive: `Alpha`, `ALPHA` and `alpha` are one name."""
    return name.lower()


class ErrorCode(Enum):
    ID_NOT_FOUND = 'Identifier not found'
    DUPLICATE_ID = 'Duplicate id found'
    WRONG_ARG_NUMBER = 'Wrong number of arguments'
    TYPE_MISMATCH = 'Type mismatch'
    NONLOCAL_VAR = 'Non-local variable reference'
    INVALID_OPERANDS = 'Invalid operands'
    DIVISION_BY_ZERO = 'Division by zero'
    VAR_NOT_BOUND = 'Variable not bound in current frame'
    STACK_OVERFLOW = 'Call stack overflow'


class Error(Exception):
    def __init__(self, error_code=None, token=None, message=None):
        self.error_code = error_code
        self.token = token
        self.message = f'{self.__class__.__name__}: {message}'
        super().__init__(self.message)


class SemanticError(Error):
    pass


class EvaluationError(Error):
    pass


###############################################################################
#                                                                             #
#  AST                                                                        #
#                                                                             #
###############################################################################

class TokenType(Enum):
    PLUS = '+'
    MINUS = '-'
    MUL = '*'
    FLOAT_DIV = '/'
    INTEGER_DIV = 'DIV'
    ASSIGN = ':='
    INTEGER = 'INTEGER'
    REAL = 'REAL'
    ID = 'ID'
    INTEGER_CONST = 'INTEGER_CONST'
    REAL_CONST = 'REAL_CONST'


class Token(object):
    def __init__(self, type, value, lineno=None, column=None):
        self.type = type
        self.value = value
        self.lineno = lineno
        self.column = column

    def __str__(self):
        """String representation of the class instance.

        Examples:
            Token(TokenType.INTEGER_CONST, 3, position=1:5)
            Token(TokenType.ID, 'alpha', position=4:9)
        """
        return 'Token({type}, {value}, position={lineno}:{column})'.format(
            type=self.type,
            value=repr(self.value),
            lineno=self.lineno,
            column=self.column
        )

    def __repr__(self):
        return self.__str__()


class AST(object):
    pass


class BinOp(AST):
    def __init__(self, left, op, right):
        self.left = left
        self.token = self.op = op
        self.right = right


class UnaryOp(AST):
    def __init__(self, op, expr):
        self.token = self.op = op
        self.expr = expr


class Compound(AST):
    def __init__(self, children=None):
        self.children = list(children or [])


class Assign(AST):
    def __init__(self, left, op, right):
        self.left = left
        self.token = self.op = op
        self.right = right


class Var(AST):
    def __init__(self, token):
        self.token = token
        self.value = token.value


class Program(AST):
    def __init__(self, name, block):
        self.name = name
        self.block = block


class Block(AST):
    def __init__(self, declarations, compound_statement):
        self.declarations = declarations
        self.compound_statement = compound_statement


class VarDecl(AST):
    def __init__(self, var_node, type_node):
        self.var_node = var_node
        self.type_node = type_node


class Type(AST):
    def __init__(self, token):
        self.token = token
        self.value = token.value


class Param(AST):
    def __init__(self, var_node, type_node):
        self.var_node = var_node
        self.type_node = type_node


class ProcedureDecl(AST):
    def __init__(self, proc_name, params, block_node, token=None):
        self.proc_name = proc_name
        self.params = params
        self.block_node = block_node
        self.token = token


class ProcedureCall(AST):
    def __init__(self, proc_name, actual_params, token):
        self.proc_name = proc_name
        self.actual_params = actual_params
        self.token = token
        # filled in by SemanticAnalyzer
        self.proc_symbol = None


class NoOp(AST):
    pass


class Num(AST):
    def __init__(self, token):
        self.token = token
        self.value = token.value


###############################################################################
#                                                                             #
#  SYMBOLS                                                                    #
#                                                                             #
###############################################################################

class Symbol:
    def __init__(self, name, type=None):
        self.name = name
        self.type = type
        self.scope_level = 0


class BuiltinTypeSymbol(Symbol):

    def __init__(self, name):
        super().__init__(name)

    def __str__(self):
        return self.name

    def __repr__(self):
        return f'<{self.__class__.__name__}(name={self.name})>'


class VarSymbol(Symbol):
    def __init__(self, name, type):
        super().__init__(name, type)

    def __str__(self):
        return self.name

    def __repr__(self):
        return f'<{self.__class__.__name__}(name={self.name}, type={self.type})>'


class ProcedureSymbol(Symbol):

    def __init__(self, name, params=None):
        super().__init__(name)
        self.params = params or []
        self.block_ast = None

    def __str__(self):
        return '<{class_name}(name={name}, parameters={params})>'.format(
            class_name=self.__class__.__name__,
            name=self.name,
            params=self.params,
        )

    __repr__ = __str__


class ScopedSymbolTable:
    def __init__(self, name, level, enclosing_scope=None, log_scope=None):
        self._symbols = dict()
        self.scope_level = level
        self.scope_name = name
        self.enclosing_scope = enclosing_scope
        self._log_scope = _SHOULD_LOG_SCOPE if log_scope is None else log_scope
        self._init_builtins()

    def log(self, msg, *args):
        if self._log_scope:
            logger.info(msg, *args)

    def _init_builtins(self):
        self.insert(BuiltinTypeSymbol('INTEGER'))
        self.insert(BuiltinTypeSymbol('REAL'))

    def __str__(self):
        h1 = 'SCOPE (SCOPED SYMBOL TABLE)'
        lines = ['\n', h1, '=' * len(h1)]
        for header_name, header_value in (
                ('Scope name', self.scope_name),
                ('Scope level', self.scope_level),
                ('Enclosing scope',
                 self.enclosing_scope.scope_name if self.enclosing_scope else None
                 )
        ):
            lines.append('%-15s: %s' % (header_name, header_value))
        h2 = 'Scope (Scoped symbol table) contents'
        lines.extend([h2, '-' * len(h2)])
        lines.extend(
            ('%7s: %r' % (key, value))
            for key, value in self._symbols.items()
        )
        lines.append('\n')
        s = '\n'.join(lines)
        return s

    __repr__ = __str__

    def __contains__(self, name):
        return canonical(name) in self._symbols

    def lookup(self, name, current_scope_only=False):
        key = canonical(name)
        scope = self
        while scope is not None:
            self.log('Lookup: %s. (Scope name: %s)', name, scope.scope_name)
            symbol = scope._symbols.get(key)
            if symbol is not None:
                return symbol
            if current_scope_only:
                return None
            scope = scope.enclosing_scope
        return None

    def insert(self, symbol):
        self.log('Insert: %s', symbol.name)
        symbol.scope_level = self.scope_level
        self._symbols[canonical(symbol.name)] = symbol


###############################################################################
#                                                                             #
#  CALL STACK                                                                 #
#                                                                             #
###############################################################################

class CallStack:
    def __init__(self):
        self._records = []

    def push(self, ar):
        self._records.append(ar)

    def pop(self):
        if not self._records:
            return None
        return self._records.pop()

    def peek(self):
        if not self._records:
            return None
        return self._records[-1]

    @property
    def records(self):
        """Activation records from the bottom (program) to the top of the stack."""
        return list(self._records)

    def __len__(self):
        return len(self._records)

    def __str__(self):
        s = '\n'.join(repr(ar) for ar in reversed(self._records))
        s = f'CALL STACK\n{s}\n'
        return s

    def __repr__(self):
        return self.__str__()


class ARType(Enum):
    PROGRAM = 'PROGRAM'
    PROCEDURE = 'PROCEDURE'


class ActivationRecord:
    def __init__(self, name, type, nesting_level):
        self.name = name
        self.type = type
        # dynamic nesting level, unrelated to Symbol.scope_level
        self.nesting_level = nesting_level
        self.members = {}

    def set(self, key, value):
        self.members[key] = value

    def get(self, key):
        return self.members.get(key)

    def __setitem__(self, key, value):
        self.set(key, value)

    def __getitem__(self, key):
        return self.members[key]

    def __contains__(self, key):
        return key in self.members

    def __str__(self):
        lines = [
            '{level}: {type} {name}'.format(
                level=self.nesting_level,
                type=self.type.value,
                name=self.name,
            )
        ]
        for name, val in self.members.items():
            lines.append(f'   {name:<20}: {val}')

        s = '\n'.join(lines)
        return s

    def __repr__(self):
        return self.__str__()


###############################################################################
#                                                                             #
#  NODE VISITORS                                                              #
#                                                                             #
###############################################################################

def _truncating_div(left, right):
    quotient = abs(left) // abs(right)
    return quotient if (left < 0) == (right < 0) else -quotient


# operators valid for each numeric kind, keyed by builtin type name
_OPERATORS = {
    'INTEGER': {
        TokenType.PLUS: operator.add,
        TokenType.MINUS: operator.sub,
        TokenType.MUL: operator.mul,
        TokenType.INTEGER_DIV: _truncating_div,
    },
    'REAL': {
        TokenType.PLUS: operator.add,
        TokenType.MINUS: operator.sub,
        TokenType.MUL: operator.mul,
        TokenType.FLOAT_DIV: operator.truediv,
    },
}


def _kind_of(value):
    # bool is an int subclass but never a Pascal INTEGER here
    if type(value) is int:
        return 'INTEGER'
    if type(value) is float:
        return 'REAL'
    return None


class NodeVisitor(object):
    def visit(self, node):
        method_name = 'visit_' + type(node).__name__
        visitor = getattr(self, method_name, self.generic_visit)
        return visitor(node)

    def generic_visit(self, node):
        raise Exception('No visit_{} method'.format(type(node).__name__))


###############################################################################
#                                                                             #
#  SEMANTIC ANALYZER                                                          #
#                                                                             #
###############################################################################

class SemanticAnalyzer(NodeVisitor):
    """Resolves every name in the tree before it runs.

    Expression visits return the builtin type symbol of the expression so
    that operand, assignment and argument kinds are checked statically.
    Variables are only visible inside the scope that declares them; data
    reaches a procedure through its parameters. Procedure names are visible
    along the whole enclosing chain.
    """

    def __init__(self, log_scope=None):
        self.current_scope: ScopedSymbolTable = None
        self.global_scope: ScopedSymbolTable = None
        self._log_scope = _SHOULD_LOG_SCOPE if log_scope is None else log_scope

    def log(self, msg, *args):
        if self._log_scope:
            logger.info(msg, *args)

    def error(self, error_code, token):
        raise SemanticError(
            error_code=error_code,
            token=token,
            message=f'{error_code.value} -> {token}',
        )

    def _enter_scope(self, name):
        self.log('ENTER scope: %s', name)
        level = 1 if self.current_scope is None else self.current_scope.scope_level + 1
        scope = ScopedSymbolTable(name, level, self.current_scope, log_scope=self._log_scope)
        self.current_scope = scope
        return scope

    def _leave_scope(self):
        scope = self.current_scope
        self.log('%s', scope)
        self.current_scope = scope.enclosing_scope
        self.log('LEAVE scope: %s', scope.scope_name)
        return scope

    def _lookup_type(self, type_node):
        type_symbol = self.current_scope.lookup(type_node.value)
        if not isinstance(type_symbol, BuiltinTypeSymbol):
            self.error(error_code=ErrorCode.ID_NOT_FOUND, token=type_node.token)
        return type_symbol

    def _expect_type(self, expected, actual, token):
        if expected.name != actual.name:
            self.error(error_code=ErrorCode.TYPE_MISMATCH, token=token)

    def visit_Program(self, node):
        self._enter_scope('global')
        self.visit(node.block)
        self.global_scope = self._leave_scope()

    def visit_Block(self, node):
        for declaration in node.declarations:
            self.visit(declaration)
        self.visit(node.compound_statement)

    def visit_Compound(self, node):
        for child in node.children:
            self.visit(child)

    def visit_NoOp(self, node):
        pass

    def visit_Num(self, node):
        kind = _kind_of(node.value)
        if kind is None:
            self.error(error_code=ErrorCode.TYPE_MISMATCH, token=node.token)
        return self.current_scope.lookup(kind)

    def visit_BinOp(self, node):
        left_type = self.visit(node.left)
        right_type = self.visit(node.right)
        self._expect_type(left_type, right_type, node.token)
        if node.op.type not in _OPERATORS[left_type.name]:
            self.error(error_code=ErrorCode.TYPE_MISMATCH, token=node.token)
        return left_type

    def visit_UnaryOp(self, node):
        if node.op.type not in (TokenType.PLUS, TokenType.MINUS):
            self.error(error_code=ErrorCode.TYPE_MISMATCH, token=node.token)
        return self.visit(node.expr)

    def visit_VarDecl(self, node):
        type_symbol = self._lookup_type(node.type_node)

        var_name = node.var_node.value
        if self.current_scope.lookup(var_name, current_scope_only=True):
            self.error(error_code=ErrorCode.DUPLICATE_ID, token=node.var_node.token)

        self.current_scope.insert(VarSymbol(var_name, type_symbol))

    def visit_Type(self, node):
        return self._lookup_type(node)

    def visit_Assign(self, node):
        value_type = self.visit(node.right)
        var_type = self.visit(node.left)
        self._expect_type(var_type, value_type, node.token)

    def visit_Var(self, node):
        var_symbol = self.current_scope.lookup(node.value)

        if not isinstance(var_symbol, VarSymbol):
            self.error(error_code=ErrorCode.ID_NOT_FOUND, token=node.token)
        if var_symbol.scope_level != self.current_scope.scope_level:
            self.error(error_code=ErrorCode.NONLOCAL_VAR, token=node.token)
        return var_symbol.type

    def visit_ProcedureDecl(self, node):
        proc_name = node.proc_name
        if self.current_scope.lookup(proc_name, current_scope_only=True):
            self.error(error_code=ErrorCode.DUPLICATE_ID, token=node.token or proc_name)

        # visible to its own body (recursion) and to the rest of the enclosing block
        proc_symbol = ProcedureSymbol(proc_name)
        self.current_scope.insert(proc_symbol)

        self._enter_scope(proc_name)
        for param in node.params:
            param_type = self._lookup_type(param.type_node)
            param_name = param.var_node.value
            if self.current_scope.lookup(param_name, current_scope_only=True):
                self.error(error_code=ErrorCode.DUPLICATE_ID, token=param.var_node.token)
            var_symbol = VarSymbol(param_name, param_type)
            self.current_scope.insert(var_symbol)
            proc_symbol.params.append(var_symbol)

        proc_symbol.block_ast = node.block_node
        self.visit(node.block_node)
        self._leave_scope()

    def visit_ProcedureCall(self, node):
        proc_symbol = self.current_scope.lookup(node.proc_name)
        if not isinstance(proc_symbol, ProcedureSymbol):
            self.error(error_code=ErrorCode.ID_NOT_FOUND, token=node.token)

        if len(node.actual_params) != len(proc_symbol.params):
            self.error(error_code=ErrorCode.WRONG_ARG_NUMBER, token=node.token)

        for param_symbol, param_node in zip(proc_symbol.params, node.actual_params):
            arg_type = self.visit(param_node)
            self._expect_type(param_symbol.type, arg_type, node.token)

        node.proc_symbol = proc_symbol


###############################################################################
#                                                                             #
#  INTERPRETER                                                                #
#                                                                             #
###############################################################################

class Interpreter(NodeVisitor):
    def __init__(self, tree, log_stack=None, max_call_depth=None):
        self.tree = tree
        self.call_stack = CallStack()
        self._log_stack = _SHOULD_LOG_STACK if log_stack is None else log_stack
        self.max_call_depth = _MAX_CALL_DEPTH if max_call_depth is None else max_call_depth

    def log(self, msg, *args):
        if self._log_stack:
            logger.info(msg, *args)

    def error(self, error_code, token):
        raise EvaluationError(
            error_code=error_code,
            token=token,
            message=f'{error_code.value} -> {token}',
        )

    def visit_BinOp(self, node):
        left = self.visit(node.left)
        right = self.visit(node.right)

        kind = _kind_of(left)
        if kind is None or kind != _kind_of(right):
            self.error(ErrorCode.INVALID_OPERANDS, node.token)
        op = _OPERATORS[kind].get(node.op.type)
        if op is None:
            self.error(ErrorCode.INVALID_OPERANDS, node.token)

        if node.op.type in (TokenType.INTEGER_DIV, TokenType.FLOAT_DIV) and right == 0:
            self.error(ErrorCode.DIVISION_BY_ZERO, node.token)
        return op(left, right)

    def visit_UnaryOp(self, node):
        value = self.visit(node.expr)
        if _kind_of(value) is None:
            self.error(ErrorCode.INVALID_OPERANDS, node.token)

        if node.op.type == TokenType.PLUS:
            return value
        elif node.op.type == TokenType.MINUS:
            return -value
        self.error(ErrorCode.INVALID_OPERANDS, node.token)

    def visit_Compound(self, node):
        for child in node.children:
            self.visit(child)

    def visit_NoOp(self, node):
        pass

    def visit_Program(self, node):
        program_name = node.name
        self.log('ENTER: PROGRAM %s', program_name)

        ar = ActivationRecord(
            name=program_name,
            type=ARType.PROGRAM,
            nesting_level=1,
        )
        self.call_stack.push(ar)

        self.log('%s', self.call_stack)

        self.visit(node.block)

        self.log('LEAVE: PROGRAM %s', program_name)
        self.log('%s', self.call_stack)
        # the program frame is left on the stack for inspection

    def visit_Block(self, node):
        for declaration in node.declarations:
            self.visit(declaration)
        self.visit(node.compound_statement)

    def visit_VarDecl(self, node):
        pass

    def visit_Type(self, node):
        pass

    def visit_ProcedureDecl(self, node):
        pass

    def visit_ProcedureCall(self, node):
        proc_symbol = node.proc_symbol
        proc_name = proc_symbol.name
        ar = ActivationRecord(proc_name, ARType.PROCEDURE, nesting_level=2)

        for param_symbol, argument_node in zip(proc_symbol.params, node.actual_params):
            # arguments are evaluated in the caller's frame
            ar[canonical(param_symbol.name)] = self.visit(argument_node)

        # the program frame does not count towards the depth
        if len(self.call_stack) > self.max_call_depth:
            self.error(ErrorCode.STACK_OVERFLOW, node.token)
        self.call_stack.push(ar)

        self.log('ENTER: PROCEDURE %s', proc_name)
        self.log('%s', self.call_stack)

        try:
            self.visit(proc_symbol.block_ast)
        except RecursionError:
            # deeply nested expressions can exhaust the interpreter first
            self.error(ErrorCode.STACK_OVERFLOW, node.token)
        finally:
            self.log('LEAVE: PROCEDURE %s', proc_name)
            self.log('%s', self.call_stack)
            self.call_stack.pop()

    def visit_Assign(self, node):
        var_name = canonical(node.left.value)
        self.call_stack.peek()[var_name] = self.visit(node.right)

    def visit_Var(self, node):
        var_name = canonical(node.value)
        ar = self.call_stack.peek()
        if ar is None or var_name not in ar:
            self.error(ErrorCode.VAR_NOT_BOUND, node.token)
        return ar[var_name]

    def visit_Num(self, node):
        return node.value

    def interpret(self):
        tree = self.tree
        if tree is not None:
            self.visit(tree)
        return self.call_stack


def run(tree, log_scope=None, log_stack=None, max_call_depth=None):
    """Analyze `tree` and, if it is valid, execute it.

    Returns the final call stack, which still holds the program frame.
    Any SemanticError is raised before a single statement executes. A
    procedure that keeps calling itself ends in EvaluationError(STACK_OVERFLOW)
    once more than `max_call_depth` procedure frames are active.
    """
    semantic_analyzer = SemanticAnalyzer(log_scope=log_scope)
    semantic_analyzer.visit(tree)

    interpreter = Interpreter(tree, log_stack=log_stack, max_call_depth=max_call_depth)
    return interpreter.interpret()
