import pytest

from loxvm.scanner import Scanner, Token, TokenType, tokenize


def types(source):
    return [t.type for t in tokenize(source)]


def test_empty_source_gives_only_eof():
    tokens = list(tokenize(""))
    assert [t.type for t in tokens] == [TokenType.EOF]
    assert tokens[0].line == 1


def test_single_character_tokens():
    assert types("(){};,.-+/*") == [
        TokenType.LEFT_PAREN,
        TokenType.RIGHT_PAREN,
        TokenType.LEFT_BRACE,
        TokenType.RIGHT_BRACE,
        TokenType.SEMICOLON,
        TokenType.COMMA,
        TokenType.DOT,
        TokenType.MINUS,
        TokenType.PLUS,
        TokenType.SLASH,
        TokenType.STAR,
        TokenType.EOF,
    ]


def test_one_or_two_character_operators():
    assert types("! != = == < <= > >=") == [
        TokenType.BANG,
        TokenType.BANG_EQUAL,
        TokenType.EQUAL,
        TokenType.EQUAL_EQUAL,
        TokenType.LESS,
        TokenType.LESS_EQUAL,
        TokenType.GREATER,
        TokenType.GREATER_EQUAL,
        TokenType.EOF,
    ]


@pytest.mark.parametrize(
    "word, kind",
    [
        ("and", TokenType.AND),
        ("class", TokenType.CLASS),
        ("else", TokenType.ELSE),
        ("false", TokenType.FALSE),
        ("for", TokenType.FOR),
        ("fun", TokenType.FUN),
        ("if", TokenType.IF),
        ("nil", TokenType.NIL),
        ("or", TokenType.OR),
        ("print", TokenType.PRINT),
        ("return", TokenType.RETURN),
        ("super", TokenType.SUPER),
        ("this", TokenType.THIS),
        ("true", TokenType.TRUE),
        ("var", TokenType.VAR),
        ("while", TokenType.WHILE),
    ],
)
def test_keywords(word, kind):
    token = next(tokenize(word))
    assert token.type is kind
    assert token.lexeme == word


@pytest.mark.parametrize("word", ["andy", "fo", "f", "t", "th", "classes", "_var", "x1"])
def test_near_keywords_are_identifiers(word):
    token = next(tokenize(word))
    assert token.type is TokenType.IDENTIFIER
    assert token.lexeme == word


def test_numbers():
    tokens = list(tokenize("123 4.5"))
    assert [(t.type, t.lexeme) for t in tokens[:2]] == [
        (TokenType.NUMBER, "123"),
        (TokenType.NUMBER, "4.5"),
    ]


def test_trailing_dot_is_not_part_of_number():
    tokens = list(tokenize("7."))
    assert [(t.type, t.lexeme) for t in tokens] == [
        (TokenType.NUMBER, "7"),
        (TokenType.DOT, "."),
        (TokenType.EOF, ""),
    ]


def test_string_lexeme_includes_quotes():
    token = next(tokenize('"hello"'))
    assert token.type is TokenType.STRING
    assert token.lexeme == '"hello"'


def test_unterminated_string():
    token = next(tokenize('"abc'))
    assert token.type is TokenType.ERROR
    assert token.lexeme == "Unterminated string."


def test_unexpected_character():
    tokens = list(tokenize("@"))
    assert tokens[0] == Token(TokenType.ERROR, "Unexpected character.", 1)
    assert tokens[-1].type is TokenType.EOF


def test_comments_are_skipped():
    assert types("// nothing here\nvar") == [TokenType.VAR, TokenType.EOF]


def test_line_numbers_follow_newlines():
    tokens = list(tokenize("a\nb\n\nc"))
    lines = [t.line for t in tokens if t.type is TokenType.IDENTIFIER]
    assert lines == sorted(lines)
    assert lines[0] == 1
    assert lines[2] - lines[1] == lines[1] - lines[0] + 1


def test_multiline_string_advances_line():
    tokens = list(tokenize('"a\nb" x'))
    assert tokens[1].line == tokens[0].line
    assert tokens[0].line == 2


def test_scanner_keeps_returning_eof():
    scanner = Scanner("x")
    assert scanner.scan_token().type is TokenType.IDENTIFIER
    assert scanner.scan_token().type is TokenType.EOF
    assert scanner.scan_token().type is TokenType.EOF


def test_lexemes_reassemble_source_without_spaces():
    source = "var x = (1 + 2.5) * y;"
    lexemes = "".join(t.lexeme for t in tokenize(source))
    assert lexemes == source.replace(" ", "")