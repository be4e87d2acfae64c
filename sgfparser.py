#!/usr/bin/env python3
# -*- coding: utf-8 -*-

# sgfparser.py (Smart Game Format parser & typed property library)
# Copyright © 2000-2021 David John Goodger (goodger@python.org)
#
# This library is free software; you can redistribute it and/or modify it
# under the terms of the GNU Lesser General Public License as published by the
# Free Software Foundation; either version 2 of the License, or (at your
# option) any later version.
#
# This library is distributed in the hope that it will be useful, but WITHOUT
# ANY WARRANTY; without even the implied warranty of MERCHANTABILITY or
# FITNESS FOR A PARTICULAR PURPOSE.  See the GNU Lesser General Public License
# for more details.
#
# You should have received a copy of the GNU Lesser General Public License
# (lgpl.txt) along with this library; if not, write to the Free Software
# Foundation, Inc., 59 Temple Place, Suite 330, Boston, MA  02111-1307  USA
# The license is currently available on the Internet at:
#     http://www.gnu.org/copyleft/lesser.html

"""
======================================================
 Smart Game Format Parser & Typed Property Library
======================================================

This library parses SGF, the Smart Game Format (file format 4, FF[4]), into
an immutable tree of typed property tokens, and writes such trees back out as
canonical SGF text. (See `the official SGF specification
<https://www.red-bean.com/sgf/>`_.)

Given a string containing a complete SGF data instance (the contents of a
.sgf file), `parse()` returns the first `GameTree` of the data, and
`parse_collection()` returns a `Collection` of all of them. A `GameTree` is a
chain of `Node` objects and (optionally) variations, which are `GameTree`
objects branching from the last node of the chain. Each `Node` is a sequence
of `SgfToken` objects, one per property value: ``B[dc]`` becomes
``Move(color=Color.BLACK, action=Coordinate(x=4, y=3))``.

Properties are decoded leniently. An unrecognized property becomes an
`Unknown` token, and a recognized property with a value that does not fit
its grammar becomes an `Invalid` token; both keep the identifier & value
as written, and neither stops the parse. Only SGF that is broken at the syntax
level (unbalanced parentheses or brackets, text where a node or property is
expected) raises `ParseError`.

The default representation (using ``str()`` or `to_text()`) of each class of
SGF objects is canonical SGF: within a node, properties are sorted and
repeated identifiers are compacted (``AB[aa]AB[bb]`` becomes
``AB[aa][bb]``).

Tree traversal in play order, with explicit variation choice, is provided
through the `Cursor` class (``iter(gametree)``).

In addition, this library contains two command-line tools:

* NormalizerCLI: Rewrite an SGF file in canonical form.

* AuditCLI: Report unknown & invalid properties in SGF files.
"""


import sys
import os
import os.path
import warnings
import argparse
import datetime
import re
import textwrap
import collections
import enum
import functools
import itertools
import math


TEXT_ENCODING = 'UTF-8'
"""Encoding used for all text input & output."""

FALLBACK_ENCODING = 'latin-1'
"""Encoding used by `Collection.load()` for data that isn't valid UTF-8."""

MAX_NESTING_DEPTH = 200
"""Deepest variation nesting accepted by `Parser`."""

UINT_MAX = 2 ** 32 - 1
"""Largest value accepted for SGF numbers."""


class Error(Exception):
    """Base class for sgfparser exceptions."""
    pass

class ParseError(Error):
    """
    Raised by `parse()`, `parse_collection()`, `TreeBuilder.build()` for SGF
    that is structurally invalid. When the scanner detected the problem, its
    `ScanError` is the ``__cause__``.
    """
    pass

# Scanner Exceptions

class ScanError(Error):
    """
    Base class for scanner exceptions. `self.position` is the offset into
    the SGF text where the problem was detected.
    """

    default_message = 'Unable to scan SGF data.'

    def __init__(self, message=None, position=None):
        if message is None:
            message = self.default_message
        if position is not None:
            message = f'{message} (at offset {position})'
        super().__init__(message)
        self.position = position

class EndOfDataScanError(ScanError):
    """Raised by `Parser.parse_game_tree()`, `Parser.scan_value()`."""
    default_message = 'Unexpected end of SGF data.'

class TreeScanError(ScanError):
    """Raised by `Parser.parse_game_tree()`."""
    default_message = 'Invalid game tree.'

class PropertyScanError(ScanError):
    """Raised by `Parser.parse_property_values()`."""
    default_message = 'Invalid property value.'

class NestingScanError(ScanError):
    """Raised by `Parser.parse_game_tree()`."""
    default_message = 'Variations nested too deeply.'

# Tree Construction Exceptions

class TreeConstructionError(Error):
    """Raised by `GameTree()`."""
    pass

# Tree Navigation Exceptions

class TreeNavigationError(Error):
    """Raised by `Cursor.pick_variation()`."""
    pass


class Color(enum.Enum):

    """Player color. ``~color`` is the other player's color."""

    BLACK = 'B'
    WHITE = 'W'

    def __invert__(self):
        return Color.WHITE if self is Color.BLACK else Color.BLACK

    def __repr__(self):
        return f'Color.{self.name}'

    @property
    def letter(self):
        """The SGF letter for this color: "B" or "W"."""
        return self.value


BLACK = Color.BLACK
WHITE = Color.WHITE


class Coordinate(collections.namedtuple('Coordinate', 'x y')):

    """
    A board point: 1-based column & row.

    SGF writes a point as two letters. The letter "i" has no number of its
    own (as on Go board diagrams): "a" to "h" are 1 to 8, and "j" is 9.
    Letters are case-insensitive on input, lowercase on output. The board
    size is not checked.
    """

    __slots__ = ()

    skipped_number = ord('i') - ord('a') + 1
    """Letter number without a coordinate of its own."""

    @classmethod
    def from_sgf(cls, text):
        """
        Return the `Coordinate` for two-letter SGF point `text`.

        Raise `ValueError` unless `text` is exactly two ASCII letters.
        """
        if len(text) != 2 or not text.isascii() or not text.isalpha():
            raise ValueError(f'Not an SGF point: {text!r}')
        return cls(*(cls.letter_to_number(char) for char in text.lower()))

    @classmethod
    def letter_to_number(cls, char):
        number = ord(char) - ord('a') + 1
        if number >= cls.skipped_number:
            number -= 1
        return number

    @classmethod
    def number_to_letter(cls, number):
        if number >= cls.skipped_number:
            number += 1
        return chr(ord('a') + number - 1)

    def to_sgf(self):
        """Return the two-letter SGF text for this point."""
        return self.number_to_letter(self.x) + self.number_to_letter(self.y)


class Pass:

    """A passed turn: a move property with an empty value. Use `PASS`."""

    __slots__ = ()

    def __repr__(self):
        return 'PASS'

    def __reduce__(self):
        return 'PASS'


PASS = Pass()


class Variant:

    """
    Mixin for the named-tuple variants of a closed family (tokens,
    outcomes): instances of different classes never compare equal, even when
    their fields do.
    """

    __slots__ = ()

    def __eq__(self, other):
        return type(self) is type(other) and tuple.__eq__(self, other)

    def __ne__(self, other):
        return not self == other

    def __hash__(self):
        return hash((type(self).__name__, tuple.__hash__(self)))


real_pattern = re.compile(
    r'[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?', re.ASCII)


def parse_real(text):
    """
    Convert an SGF Real value to a float. Raise `ValueError` for anything
    else, including infinities & NaNs.
    """
    if not real_pattern.fullmatch(text):
        raise ValueError(f'Not an SGF real number: {text!r}')
    value = float(text)
    if math.isinf(value):
        raise ValueError(f'SGF real number out of range: {text!r}')
    return value


def format_real(value):
    """Return SGF text for a real number, without a trailing ".0"."""
    if value == int(value):
        return str(int(value))
    return repr(value)


def parse_number(text, minimum=0, maximum=UINT_MAX):
    """
    Convert an unsigned SGF Number value to an int. Raise `ValueError` if it
    isn't made of ASCII digits or lies outside `minimum` to `maximum`.
    """
    if not (text.isascii() and text.isdigit()):
        raise ValueError(f'Not an SGF number: {text!r}')
    number = int(text)
    if not minimum <= number <= maximum:
        raise ValueError(
            f'SGF number {number} out of range ({minimum} to {maximum})')
    return number


class Outcome(Variant):

    """
    Base class of game results (the RE property). `self.winner` is the
    winning `Color`, or `None` for a draw.
    """

    __slots__ = ()

    code = None
    """Text after "B+"/"W+" in SGF."""

    @property
    def winner(self):
        return self.color

    def to_sgf(self):
        return f'{self.color.letter}+{self.code}'

    @classmethod
    def from_sgf(cls, text):
        """
        Return the `Outcome` for RE property `text`. Raise `ValueError` for a
        missing or unreadable result ("", "Void", "Black resigns", etc.).
        """
        if text in ('', 'Void'):
            raise ValueError(f'No game result: {text!r}')
        if text in ('Draw', 'D'):
            return DRAW
        parts = text.split('+')
        if len(parts) != 2:
            raise ValueError(f'Not an SGF game result: {text!r}')
        color = Color(parts[0])
        outcome_class = cls.outcome_codes.get(parts[1])
        if outcome_class is not None:
            return outcome_class(color)
        return WinnerByPoints(color, parse_real(parts[1]))

    outcome_codes = {}
    """Mapping of SGF result codes (text after "B+"/"W+") to classes.
    Initialized below, once the outcome classes exist."""


class WinnerByResign(Outcome, collections.namedtuple('WinnerByResign', 'color')):
    __slots__ = ()
    code = 'R'

class WinnerByForfeit(Outcome, collections.namedtuple('WinnerByForfeit', 'color')):
    __slots__ = ()
    code = 'F'

class WinnerByTime(Outcome, collections.namedtuple('WinnerByTime', 'color')):
    __slots__ = ()
    code = 'T'

class WinnerByPoints(Outcome, collections.namedtuple('WinnerByPoints', 'color score')):

    __slots__ = ()

    def to_sgf(self):
        return f'{self.color.letter}+{format_real(self.score)}'

class Draw(Outcome, collections.namedtuple('Draw', '')):

    __slots__ = ()

    @property
    def winner(self):
        return None

    def to_sgf(self):
        return 'Draw'

    def __repr__(self):
        return 'DRAW'

    def __reduce__(self):
        return 'DRAW'


DRAW = Draw()

Outcome.outcome_codes.update({
    'R': WinnerByResign,
    'Resign': WinnerByResign,
    'F': WinnerByForfeit,
    'Forfeit': WinnerByForfeit,
    'T': WinnerByTime,
    'Time': WinnerByTime,
    })


class RuleSet(collections.namedtuple('RuleSet', 'name')):

    """
    Rule set named by the RU property. SGF only standardizes a few names;
    any other name is kept exactly as given.
    """

    __slots__ = ()

    known_names = ('Japanese', 'NZ', 'GOE', 'AGA', 'Chinese')

    @property
    def is_known(self):
        return self.name in self.known_names

    def __str__(self):
        return self.name


JAPANESE = RuleSet('Japanese')
NZ = RuleSet('NZ')
GOE = RuleSet('GOE')
AGA = RuleSet('AGA')
CHINESE = RuleSet('Chinese')


class GameType(collections.namedtuple('GameType', 'number')):

    """Game type number of the GM property. `GO` is game type 1."""

    __slots__ = ()

    @property
    def name(self):
        """Name of the game, or `None` if the number isn't registered."""
        return self.game_names.get(self.number)

    game_names = {
        1: 'Go',
        2: 'Othello',
        3: 'chess',
        4: 'Gomoku+Renju',
        5: "Nine Men's Morris",
        6: 'Backgammon',
        7: 'Chinese chess',
        8: 'Shogi',
        9: 'Lines of Action',
        10: 'Ataxx',
        11: 'Hex',
        12: 'Jungle',
        13: 'Neutron',
        14: "Philosopher's Football",
        15: 'Quadrature',
        16: 'Trax',
        17: 'Tantrix',
        18: 'Amazons',
        19: 'Octi',
        20: 'Gess',
        21: 'Twixt',
        22: 'Zertz',
        23: 'Plateau',
        24: 'Yinsh',
        25: 'Punct',
        26: 'Gobblet',
        27: 'hive',
        28: 'Exxit',
        29: 'Hnefatal',
        30: 'Kuba',
        31: 'Tripples',
        32: 'Chase',
        33: 'Tumbling Down',
        34: 'Sahara',
        35: 'Byte',
        36: 'Focus',
        37: 'Dvonn',
        38: 'Tamsk',
        39: 'Gipf',
        40: 'Kropki',
        }
    """Mapping of game type numbers to names."""


GO = GameType(1)


class DisplayNodes(enum.Enum):
    """Which nodes a viewer shows as variations (the ST property)."""
    CHILDREN = 'children'
    SIBLINGS = 'siblings'


UTF8 = TEXT_ENCODING
"""Charset token encoding value for any spelling of "UTF-8"."""


chars_to_escape_pattern = re.compile(r'([\\\]])')
"""Regexp pattern isolating property value characters that need a
backslash escape."""


def escape_text(text):
    """Add backslash-escapes to property value characters that need them."""
    return chars_to_escape_pattern.sub(r'\\\1', text)


class SgfToken(Variant):

    """
    Base class of SGF property tokens. Each token is one property value,
    decoded: ``B[dc]`` is ``Move(BLACK, Coordinate(4, 3))``.

    Subclasses are named tuples. Each provides `identifier` (the canonical
    SGF property ID) and `value_text()` (the unescaped SGF value), and most
    provide a `decode()` class method used by `from_pair()`. ``str(token)``
    is the property in SGF form.
    """

    __slots__ = ()

    root = False
    """Flags tokens that belong only in the root node."""

    setup = False
    """Flags setup tokens (stones placed rather than played)."""

    game_info = False
    """Flags game information tokens (players, event, result, etc.)."""

    def is_root_token(self):
        return self.root

    def is_setup_token(self):
        return self.setup

    def is_game_info_token(self):
        return self.game_info

    def value_text(self):
        raise NotImplementedError

    def __str__(self):
        return f'{self.identifier}[{escape_text(self.value_text())}]'

    @staticmethod
    def from_pair(identifier, value):
        """Same as the module-level `from_pair()`."""
        return from_pair(identifier, value)


class ColorToken(SgfToken):

    """
    Base class of tokens with one identifier per player (B & W, AB & AW,
    etc.). The first field is the `Color`.
    """

    __slots__ = ()

    identifiers = {}
    """Mapping of `Color` to property ID."""

    @property
    def identifier(self):
        return self.identifiers[self.color]


class Move(ColorToken, collections.namedtuple('Move', 'color action')):

    """A play (B, W). `self.action` is a `Coordinate` or `PASS`."""

    __slots__ = ()
    identifiers = {BLACK: 'B', WHITE: 'W'}

    @classmethod
    def decode(cls, color, value):
        if not value:
            return cls(color, PASS)
        return cls(color, Coordinate.from_sgf(value))

    def value_text(self):
        if self.action is PASS:
            return ''
        return self.action.to_sgf()


class Add(ColorToken, collections.namedtuple('Add', 'color coordinate')):

    """A stone placed by setup (AB, AW)."""

    __slots__ = ()
    identifiers = {BLACK: 'AB', WHITE: 'AW'}
    setup = True

    @classmethod
    def decode(cls, color, value):
        return cls(color, Coordinate.from_sgf(value))

    def value_text(self):
        return self.coordinate.to_sgf()


class Time(ColorToken, collections.namedtuple('Time', 'color time')):

    """Time left for a player, in seconds (BL, WL)."""

    __slots__ = ()
    identifiers = {BLACK: 'BL', WHITE: 'WL'}

    @classmethod
    def decode(cls, color, value):
        return cls(color, parse_number(value))

    def value_text(self):
        return str(self.time)


class MovesRemaining(ColorToken, collections.namedtuple('MovesRemaining', 'color moves')):

    """Moves left in the current overtime period (OB, OW)."""

    __slots__ = ()
    identifiers = {BLACK: 'OB', WHITE: 'OW'}

    @classmethod
    def decode(cls, color, value):
        return cls(color, parse_number(value))

    def value_text(self):
        return str(self.moves)


class PlayerName(ColorToken, collections.namedtuple('PlayerName', 'color name')):

    __slots__ = ()
    identifiers = {BLACK: 'PB', WHITE: 'PW'}
    game_info = True

    @classmethod
    def decode(cls, color, value):
        return cls(color, value)

    def value_text(self):
        return self.name


class PlayerRank(ColorToken, collections.namedtuple('PlayerRank', 'color rank')):

    __slots__ = ()
    identifiers = {BLACK: 'BR', WHITE: 'WR'}
    game_info = True

    @classmethod
    def decode(cls, color, value):
        return cls(color, value)

    def value_text(self):
        return self.rank


class TextToken(SgfToken):

    """Base class of tokens holding free text in field `text`."""

    __slots__ = ()

    @classmethod
    def decode(cls, value):
        return cls(value)

    def value_text(self):
        return self.text


class Event(TextToken, collections.namedtuple('Event', 'text')):
    __slots__ = ()
    identifier = 'EV'
    game_info = True

class Copyright(TextToken, collections.namedtuple('Copyright', 'text')):
    __slots__ = ()
    identifier = 'CR'
    game_info = True

class GameName(TextToken, collections.namedtuple('GameName', 'text')):
    __slots__ = ()
    identifier = 'GN'
    game_info = True

class Place(TextToken, collections.namedtuple('Place', 'text')):
    __slots__ = ()
    identifier = 'PC'
    game_info = True

class Date(TextToken, collections.namedtuple('Date', 'text')):
    __slots__ = ()
    identifier = 'DT'
    game_info = True

class Overtime(TextToken, collections.namedtuple('Overtime', 'text')):
    """Overtime system description, e.g. "5x30 byo-yomi" (OT)."""
    __slots__ = ()
    identifier = 'OT'
    game_info = True

class Comment(TextToken, collections.namedtuple('Comment', 'text')):
    __slots__ = ()
    identifier = 'C'


class Komi(SgfToken, collections.namedtuple('Komi', 'komi')):

    __slots__ = ()
    identifier = 'KM'
    game_info = True

    @classmethod
    def decode(cls, value):
        return cls(parse_real(value))

    def value_text(self):
        return format_real(self.komi)


class Size(SgfToken, collections.namedtuple('Size', 'width height')):

    """
    Board size (SZ): ``SZ[19]`` for a square board, ``SZ[15:17]`` for
    width 15 & height 17. The only root-only token.
    """

    __slots__ = ()
    identifier = 'SZ'
    root = True

    @classmethod
    def decode(cls, value):
        width, colon, height = value.partition(':')
        if colon:
            return cls(parse_number(width), parse_number(height))
        size = parse_number(value)
        return cls(size, size)

    def value_text(self):
        if self.width == self.height:
            return str(self.width)
        return f'{self.width}:{self.height}'


class TimeLimit(SgfToken, collections.namedtuple('TimeLimit', 'time')):

    """Main time per player, in seconds (TM)."""

    __slots__ = ()
    identifier = 'TM'
    game_info = True

    @classmethod
    def decode(cls, value):
        return cls(parse_number(value))

    def value_text(self):
        return str(self.time)


class Handicap(SgfToken, collections.namedtuple('Handicap', 'stones')):

    __slots__ = ()
    identifier = 'HA'
    game_info = True

    @classmethod
    def decode(cls, value):
        return cls(parse_number(value))

    def value_text(self):
        return str(self.stones)


class Game(SgfToken, collections.namedtuple('Game', 'game_type')):

    """Game type (GM); `self.game_type` is a `GameType`, e.g. `GO`."""

    __slots__ = ()
    identifier = 'GM'

    @classmethod
    def decode(cls, value):
        return cls(GameType(parse_number(value)))

    def value_text(self):
        return str(self.game_type.number)


class FileFormat(SgfToken, collections.namedtuple('FileFormat', 'version')):

    """SGF file format version (FF), 1 to 4."""

    __slots__ = ()
    identifier = 'FF'

    @classmethod
    def decode(cls, value):
        return cls(parse_number(value, minimum=1, maximum=4))

    def value_text(self):
        return str(self.version)


class Charset(SgfToken, collections.namedtuple('Charset', 'encoding')):

    """
    Character set claimed by the file (CA). `self.encoding` is `UTF8` for
    any spelling of "UTF-8", else the name as given. Recording the claim
    does not convert anything.
    """

    __slots__ = ()
    identifier = 'CA'

    @classmethod
    def decode(cls, value):
        if value.lower() == UTF8.lower():
            return cls(UTF8)
        return cls(value)

    def value_text(self):
        return self.encoding


class Application(SgfToken, collections.namedtuple('Application', 'name version')):

    """Application that wrote the file (AP), as ``name:version``."""

    __slots__ = ()
    identifier = 'AP'

    @classmethod
    def decode(cls, value):
        name, colon, version = value.partition(':')
        if not colon:
            raise ValueError(f'AP value lacks a version: {value!r}')
        return cls(name, version)

    def value_text(self):
        return f'{self.name}:{self.version}'


class VariationDisplay(SgfToken, collections.namedtuple('VariationDisplay', 'nodes on_board_display')):

    """
    How variations are shown (ST): `self.nodes` is a `DisplayNodes`, and
    `self.on_board_display` flags board markup for variations.
    """

    __slots__ = ()
    identifier = 'ST'

    styles = {
        0: (DisplayNodes.CHILDREN, True),
        1: (DisplayNodes.SIBLINGS, True),
        2: (DisplayNodes.CHILDREN, False),
        3: (DisplayNodes.SIBLINGS, False),
        }
    """Mapping of ST numbers to (nodes, on_board_display)."""

    @classmethod
    def decode(cls, value):
        number = parse_number(value, maximum=max(cls.styles))
        return cls(*cls.styles[number])

    def value_text(self):
        for number, style in self.styles.items():
            if style == (self.nodes, self.on_board_display):
                return str(number)
        raise ValueError(f'No ST number for {self!r}')


class Rule(SgfToken, collections.namedtuple('Rule', 'rule_set')):

    """Rules used (RU); `self.rule_set` is a `RuleSet`."""

    __slots__ = ()
    identifier = 'RU'
    game_info = True

    @classmethod
    def decode(cls, value):
        return cls(RuleSet(value))

    def value_text(self):
        return str(self.rule_set)


class Result(SgfToken, collections.namedtuple('Result', 'outcome')):

    """Game result (RE); `self.outcome` is an `Outcome`."""

    __slots__ = ()
    identifier = 'RE'
    game_info = True

    @classmethod
    def decode(cls, value):
        return cls(Outcome.from_sgf(value))

    def value_text(self):
        return self.outcome.to_sgf()


class PointToken(SgfToken):

    """Base class of board markup on one point (field `coordinate`)."""

    __slots__ = ()

    @classmethod
    def decode(cls, value):
        return cls(Coordinate.from_sgf(value))

    def value_text(self):
        return self.coordinate.to_sgf()


class Square(PointToken, collections.namedtuple('Square', 'coordinate')):
    __slots__ = ()
    identifier = 'SQ'

class Triangle(PointToken, collections.namedtuple('Triangle', 'coordinate')):
    __slots__ = ()
    identifier = 'TR'


class Label(SgfToken, collections.namedtuple('Label', 'coordinate label')):

    """
    Text label on a point (LB), as ``point:text``, e.g. ``LB[dd:A]``. The
    third character separates point from text; it is written back as ":".
    """

    __slots__ = ()
    identifier = 'LB'

    @classmethod
    def decode(cls, value):
        if len(value) < 4:
            raise ValueError(f'Not an SGF label: {value!r}')
        return cls(Coordinate.from_sgf(value[:2]), value[3:])

    def value_text(self):
        return f'{self.coordinate.to_sgf()}:{self.label}'


class Unknown(SgfToken, collections.namedtuple('Unknown', 'identifier value')):

    """
    A property this library doesn't recognize. Keeps the identifier as it
    was written (lowercase letters included).
    """

    __slots__ = ()

    def value_text(self):
        return self.value


class Invalid(SgfToken, collections.namedtuple('Invalid', 'identifier value')):

    """
    A recognized property whose value doesn't fit the property's grammar,
    e.g. ``W[foobar]``. Keeps the identifier as it was written.
    """

    __slots__ = ()

    def value_text(self):
        return self.value


property_decoders = {
    'B':  functools.partial(Move.decode, BLACK),
    'W':  functools.partial(Move.decode, WHITE),
    'AB': functools.partial(Add.decode, BLACK),
    'AW': functools.partial(Add.decode, WHITE),
    'BL': functools.partial(Time.decode, BLACK),
    'WL': functools.partial(Time.decode, WHITE),
    'OB': functools.partial(MovesRemaining.decode, BLACK),
    'OW': functools.partial(MovesRemaining.decode, WHITE),
    'PB': functools.partial(PlayerName.decode, BLACK),
    'PW': functools.partial(PlayerName.decode, WHITE),
    'BR': functools.partial(PlayerRank.decode, BLACK),
    'WR': functools.partial(PlayerRank.decode, WHITE),
    'EV': Event.decode,
    'CR': Copyright.decode,
    'GN': GameName.decode,
    'PC': Place.decode,
    'DT': Date.decode,
    'OT': Overtime.decode,
    'C':  Comment.decode,
    'KM': Komi.decode,
    'SZ': Size.decode,
    'TM': TimeLimit.decode,
    'HA': Handicap.decode,
    'GM': Game.decode,
    'FF': FileFormat.decode,
    'CA': Charset.decode,
    'AP': Application.decode,
    'ST': VariationDisplay.decode,
    'RU': Rule.decode,
    'RE': Result.decode,
    'SQ': Square.decode,
    'TR': Triangle.decode,
    'LB': Label.decode,
    }
"""Mapping of normalized SGF property ID to value decoder. A decoder takes
the raw value text and returns an `SgfToken`, or raises `ValueError`."""


def normalize_identifier(identifier):
    """
    Return `identifier` with everything but uppercase ASCII letters removed
    (SGF allows lowercase filler: "CopyRight" means "CR").
    """
    return ''.join(
        char for char in identifier if char.isascii() and char.isupper())


def from_pair(identifier, value):
    """
    Decode one property value into an `SgfToken`. Never raises for bad
    input:

    * ``from_pair('B', 'dc')`` => ``Move(BLACK, Coordinate(4, 3))``
    * ``from_pair('B', '')`` => ``Move(BLACK, PASS)``
    * ``from_pair('B', 'foobar')`` => ``Invalid('B', 'foobar')``
    * ``from_pair('FO', 'asdf')`` => ``Unknown('FO', 'asdf')``
    """
    decode = property_decoders.get(normalize_identifier(identifier))
    if decode is None:
        return Unknown(identifier, value)
    try:
        return decode(value)
    except ValueError:
        return Invalid(identifier, value)


def property_identifier(text):
    """Return the property ID of SGF property text like "AB[aa]"."""
    return text.partition('[')[0]


class Node(tuple):

    """
    An SGF node (one move or play, or setup): a sequence of `SgfToken`
    objects in the order they were read. A property may occur more than
    once (``AB[aa][bb]`` gives two `Add` tokens).

    Example: Let ``node`` be a `Node` parsed from ';B[aa]BL[250]C[comment]':

    * node[0] => ``Move(color=Color.BLACK, action=Coordinate(x=1, y=1))``
    * str(node) => ';BL[250]B[aa]C[comment]'
    """

    def __new__(cls, tokens=()):
        return super().__new__(cls, tokens)

    def __str__(self):
        """
        Return the canonical SGF text of this `Node`: properties sorted,
        with runs of one property ID compacted into ``ID[v1][v2]``.
        """
        parts = [';']
        rendered = sorted(str(token) for token in self)
        for identifier, texts in itertools.groupby(
                rendered, key=property_identifier):
            parts.append(identifier)
            parts.extend(text[len(identifier):] for text in texts)
        return ''.join(parts)

    def __repr__(self):
        return '{}({!r})'.format(self.__class__.__name__, list(self))

    def get_unknown_tokens(self):
        return [token for token in self if isinstance(token, Unknown)]

    def get_invalid_tokens(self):
        return [token for token in self if isinstance(token, Invalid)]


class GameTree:

    """
    An SGF game tree: a chain of `Node` objects (game plays) and optional
    branches (game variations).

    Instance attributes:

    self.nodes : tuple of `Node`
       Game tree 'trunk' (main line of game or branch), all plays prior to any
       variations. The last node is the branch point of the variations.

    self.variations : tuple of `GameTree`
       Variations of a game. `self.variations[0]` is the main line.

    A `GameTree` is not modified after construction; ``GameTree()`` is the
    empty tree.
    """

    def __init__(self, nodes=(), variations=()):
        """
        Arguments:

        - nodes : iterable of `Node` (or of token sequences, converted to
          `Node`) -- Stored in `self.nodes`.
        - variations : iterable of `GameTree` -- Stored in `self.variations`.
        """
        self.nodes = tuple(
            node if isinstance(node, Node) else Node(node) for node in nodes)
        self.variations = tuple(variations)
        for variation in self.variations:
            if not isinstance(variation, GameTree):
                raise TreeConstructionError(
                    f'Variations must be GameTree objects, not '
                    f'{type(variation)}.')

    def __eq__(self, other):
        if not isinstance(other, GameTree):
            return NotImplemented
        return (self.nodes == other.nodes
                and self.variations == other.variations)

    __hash__ = None

    def __str__(self):
        """Return the canonical SGF text of this `GameTree`."""
        parts = ['(']
        parts.extend(str(node) for node in self.nodes)
        parts.extend(str(variation) for variation in self.variations)
        parts.append(')')
        return ''.join(parts)

    def __repr__(self):
        nodes = variations = ''
        if self.nodes:
            nodes = 'nodes=[{!r}, ...]'.format(self.nodes[0])
        if self.variations:
            variations = 'variations=[{!r}, ...]'.format(self.variations[0])
        return '{}({})'.format(
            self.__class__.__name__, ', '.join(filter(None, (nodes, variations))))

    def __iter__(self):
        """Return a new `Cursor`, which iterates over the nodes in play order."""
        return Cursor(self)

    cursor = __iter__

    def walk(self):
        """Generate all nodes, depth-first: own nodes, then each variation."""
        yield from self.nodes
        for variation in self.variations:
            yield from variation.walk()

    def get_unknown_nodes(self):
        """Return all nodes (depth-first) holding an `Unknown` token."""
        return [node for node in self.walk() if node.get_unknown_tokens()]

    def get_invalid_nodes(self):
        """Return all nodes (depth-first) holding an `Invalid` token."""
        return [node for node in self.walk() if node.get_invalid_tokens()]

    def count_max_nodes(self):
        """Return the number of nodes in the longest line of play."""
        return len(self.nodes) + max(
            (variation.count_max_nodes() for variation in self.variations),
            default=0)

    def trunk(self):
        """
        Return the main line of the game (nodes and variation 0, recursively)
        as a new `GameTree` without variations.
        """
        nodes = list(self.nodes)
        tree = self
        while tree.variations:
            tree = tree.variations[0]
            nodes.extend(tree.nodes)
        return GameTree(nodes)


class Collection(tuple):

    """
    A `Collection` is a sequence of `GameTree` objects, one per game in an
    SGF file.
    """

    path = None

    def __str__(self):
        """
        SGF text representation, accessed via `str(collection)`.
        Separates game trees with a blank line.
        """
        return '\n\n'.join(str(item) for item in self)

    def __repr__(self):
        """
        The canonical string representation of the `Collection`.
        """
        if not self:
            return '{}()'.format(self.__class__.__name__)
        return '{}({}, ...)'.format(self.__class__.__name__, repr(self[0]))

    def cursor(self, gamenum=0):
        """Returns a `Cursor` object for navigation of the given `GameTree`."""
        return Cursor(self[gamenum])

    @classmethod
    def load(cls, path=None, data=None):
        """
        Return a `Collection` loaded from a filesystem `path` (`None` or "-"
        reads from <stdin>) or from `data` (`str` or `bytes`).

        Raise `ParseError` for structurally invalid SGF.
        """
        if data is None:
            if path == '-':
                path = None
            if path:
                with open(path, 'rb') as src:
                    data = src.read()
            else:
                # read bytestring from <stdin>:
                data = sys.stdin.buffer.read()
        if isinstance(data, bytes):
            data = decode_data(data, path)
        collection = parse_collection(data)
        collection.path = path
        return collection

    def save(self, file_or_path=None):
        """
        Output as UTF-8 bytes to `file_or_path` (`None` or "-" writes to
        <stdout>).
        """
        output = bytes(str(self), encoding=TEXT_ENCODING)
        if file_or_path == '-':
            file_or_path = None
        if hasattr(file_or_path, 'write'):
            file_or_path.write(output)
        elif file_or_path:
            with open(file_or_path, 'wb') as dest:
                dest.write(output)
        else:
            sys.stdout.buffer.write(output)


def decode_data(data, path=None):
    """
    Decode SGF file contents. Use `TEXT_ENCODING`, or `FALLBACK_ENCODING`
    (with a warning) if `data` isn't valid in `TEXT_ENCODING`.
    """
    try:
        return data.decode(TEXT_ENCODING)
    except UnicodeDecodeError:
        source = path if path else '<data>'
        warnings.warn(
            f'"{source}" is not valid {TEXT_ENCODING}; '
            f'decoding as {FALLBACK_ENCODING}.')
        return data.decode(FALLBACK_ENCODING)


class Cursor:

    """
    Play-order iterator over a `GameTree`, returned by ``iter(gametree)``.

    Yields the nodes of the current chain; at the end of a chain with
    variations, continues into the selected variation (variation 0 unless
    `pick_variation()` chose another), and stops at the end of a chain
    without variations. Each call to ``iter(gametree)`` starts afresh.

    Instance attributes:

    - self.game : `GameTree` -- The root `GameTree`.
    - self.gametree : `GameTree` -- The current `GameTree`.
    - self.index : integer -- The offset of the next node within
      `self.gametree.nodes`.
    - self.variation : integer -- The variation to enter when the chain of
      `self.gametree` is exhausted.
    - self.node : `Node` -- The node most recently returned (`None` before
      the first).
    - self.nodenum : integer -- The offset of `self.node` from the root of
      `self.game`. The nodenum of the root node is 0.
    """

    def __init__(self, gametree):
        self.game = gametree
        self.reset()

    def reset(self):
        """Set `Cursor` to point to the start of `self.game`."""
        self.gametree = self.game
        self.index = 0
        self.variation = 0
        self.node = None
        self.nodenum = -1

    def __iter__(self):
        return self

    def __next__(self):
        while self.index >= len(self.gametree.nodes):
            if not self.gametree.variations:
                raise StopIteration
            self.gametree = self.gametree.variations[self.variation]
            self.index = 0
            self.variation = 0
        self.node = self.gametree.nodes[self.index]
        self.index += 1
        self.nodenum += 1
        return self.node

    def pick_variation(self, index):
        """
        Choose the variation to continue with when the current chain ends.

        Raise `TreeNavigationError` (leaving the choice unchanged) if the
        current game tree has no variation `index`.
        """
        count = len(self.gametree.variations)
        if not 0 <= index < count:
            raise TreeNavigationError(
                f'Nonexistent variation {index} '
                f'({count} variations available).')
        self.variation = index

    @property
    def at_end(self):
        """Flags if the current line of play has no more nodes."""
        return (self.index >= len(self.gametree.nodes)
                and not self.gametree.variations)


TreeSyntax = collections.namedtuple('TreeSyntax', 'nodes subtrees')
TreeSyntax.__doc__ = """\
Scanned game tree: `nodes` is a list of nodes (each a list of
`PropertySyntax`), `subtrees` a list of `TreeSyntax`."""

PropertySyntax = collections.namedtuple('PropertySyntax', 'identifier values')
PropertySyntax.__doc__ = """\
Scanned property: `identifier` as written, `values` a list of unescaped
value strings."""


class Parser:

    """
    Scanner for SGF text. Recognizes the parenthesis/bracket grammar::

        Collection = GameTree { GameTree }
        GameTree   = "(" Sequence { GameTree } ")"
        Sequence   = Node { Node }
        Node       = ";" { Property }
        Property   = Identifier Value { Value }
        Value      = "[" CharData "]"

    `Parser.parse()` returns the scanned game trees as `TreeSyntax` records;
    property values are unescaped but not interpreted (that's the job of
    `TreeBuilder`). Text before the first "(" and after the last game tree
    is ignored. Raise `ScanError` subclasses for text that doesn't fit.
    """

    class patterns:
        """Regular expression text matching patterns."""
        collection_start = re.compile(r'\(')
        game_tree_start  = re.compile(r'\s*\(')
        game_tree_next   = re.compile(r'\s*(;|\(|\))')
        node_contents    = re.compile(r'\s*([A-Za-z]+)')
        property_start   = re.compile(r'\s*\[')
        value_special    = re.compile(r'[\\\]]')
        line_break       = re.compile(r'\r\n?|\n\r?')    # CR, LF, CR/LF, LF/CR

    def __init__(self, text, max_depth=None):
        self.text = text
        """The complete SGF data instance (`str`)."""

        self.textlen = len(text)
        """Length of `self.text`."""

        self.index = 0
        """Current parsing position in `self.text`."""

        self.max_depth = MAX_NESTING_DEPTH if max_depth is None else max_depth
        """Deepest game tree nesting allowed."""

    def parse(self):
        """
        Scan the SGF text stored in `self.text`, and return a list of
        `TreeSyntax`, one per game.
        """
        games = []
        match = self.patterns.collection_start.search(self.text)
        if not match:
            return games
        self.index = match.start()
        while True:
            game = self.parse_one_game()
            if game is None:
                break
            games.append(game)
        return games

    def parse_one_game(self):
        """
        Scan one game from `self.text`. Return its `TreeSyntax`, or `None`
        if no further game tree follows.
        """
        match = self.patterns.game_tree_start.match(self.text, self.index)
        if match:
            self.index = match.end()
            return self.parse_game_tree()
        return None

    def parse_game_tree(self, depth=1):
        """
        Scan and return one `TreeSyntax`.

        Called when "(" encountered (& consumed), ends when the matching ")"
        encountered.
        """
        if depth > self.max_depth:
            raise NestingScanError(
                f'Variations nested more than {self.max_depth} deep.',
                self.index)
        nodes = []
        subtrees = []
        while self.index < self.textlen:
            match = self.patterns.game_tree_next.match(self.text, self.index)
            if not match:
                if self.text[self.index:].isspace():
                    break
                raise TreeScanError(
                    'Expected ";", "(" or ")".', self.index)
            self.index = match.end()
            if match.group(1) == ';':
                # found start of node
                if subtrees:
                    raise TreeScanError(
                        'A node was encountered after a variation.',
                        match.start(1))
                nodes.append(self.parse_node())
            elif match.group(1) == '(':
                # found start of variation
                subtrees.append(self.parse_game_tree(depth + 1))
            else:
                # found end of GameTree ")"
                return TreeSyntax(nodes, subtrees)
        raise EndOfDataScanError(
            'Unexpected end of SGF data: a game tree is not closed.',
            self.index)

    def parse_node(self):
        """
        Scan and return one node, a list of `PropertySyntax` (which can be
        empty).

        Called when ";" encountered (& consumed), ends at the first thing
        that isn't a property.
        """
        properties = []
        while True:
            match = self.patterns.node_contents.match(self.text, self.index)
            if not match:
                # reached end of Node
                return properties
            self.index = match.end()
            properties.append(
                PropertySyntax(match.group(1), self.parse_property_values()))

    def parse_property_values(self):
        """
        Scan and return a list of property values.

        Called after a property identifier, ends when the next property,
        node, or game tree encountered. Raise `PropertyScanError` if no value
        follows the identifier.
        """
        values = []
        while True:
            match = self.patterns.property_start.match(self.text, self.index)
            if not match:
                # reached end of Property
                break
            self.index = match.end()
            values.append(self.scan_value())
        if not values:
            raise PropertyScanError(
                'Property identifier without a value.', self.index)
        return values

    def scan_value(self):
        """
        Scan one property value, after its "[", up to & including the
        closing "]". Remove backslash escapes & escaped line breaks.
        """
        start = self.index
        parts = []
        while True:
            match = self.patterns.value_special.search(self.text, self.index)
            if not match:
                raise EndOfDataScanError(
                    'Unexpected end of SGF data: a property value is not '
                    'closed.', start)
            parts.append(self.text[self.index:match.start()])
            if match.group() == ']':
                self.index = match.end()
                return ''.join(parts)
            escaped = match.end()
            line_break = self.patterns.line_break.match(self.text, escaped)
            if line_break:
                # soft line break; remove it:
                self.index = line_break.end()
            elif escaped < self.textlen:
                parts.append(self.text[escaped])
                self.index = escaped + 1
            else:
                raise EndOfDataScanError(
                    'Unexpected end of SGF data after "\\".', start)


class TreeBuilder:

    """
    Builds `GameTree` objects from scanned `TreeSyntax` records, decoding
    every property value with `from_pair()`.

    Syntax problems raise `ParseError`; property problems don't (they give
    `Unknown` & `Invalid` tokens).
    """

    identifier_pattern = re.compile(r'[A-Za-z]+')

    def build_collection(self, games):
        """Return a `Collection` built from a list of `TreeSyntax`."""
        return Collection(self.build(game) for game in games)

    def build(self, syntax, root=True):
        """
        Return the `GameTree` for `syntax` & its subtrees. Only a root
        `syntax` may be entirely empty ("()"); that gives ``GameTree()``.
        """
        if not syntax.nodes:
            if root and not syntax.subtrees:
                return GameTree()
            raise ParseError('A game tree must begin with a node.')
        nodes = [
            self.build_node(properties, root and index == 0)
            for (index, properties) in enumerate(syntax.nodes)]
        variations = [
            self.build(subtree, root=False) for subtree in syntax.subtrees]
        return GameTree(nodes, variations)

    def build_node(self, properties, is_root=False):
        """
        Return a `Node` with one token per property value, in order.
        `is_root` flags the first node of a game.
        """
        tokens = []
        for prop in properties:
            identifier, values = prop
            if not (isinstance(identifier, str)
                    and self.identifier_pattern.fullmatch(identifier)):
                raise ParseError(f'Invalid property identifier: {identifier!r}')
            if not values:
                raise ParseError(f'Property "{identifier}" has no value.')
            for value in values:
                token = from_pair(identifier, value)
                if token.is_root_token() and not is_root:
                    warnings.warn(
                        f'Root property "{token}" found outside the root '
                        f'node; keeping it.')
                tokens.append(token)
        return Node(tokens)


def parse_collection(text):
    """
    Parse SGF `text` and return a `Collection` of all its games (empty if
    `text` holds no game tree).

    Raise `ParseError` if `text` isn't structurally valid SGF.
    """
    try:
        games = Parser(text).parse()
    except ScanError as error:
        raise ParseError(f'Invalid SGF data: {error}') from error
    return TreeBuilder().build_collection(games)


def parse(text):
    """
    Parse SGF `text` and return its first `GameTree` (``GameTree()`` if
    `text` holds no game tree).

    Raise `ParseError` if `text` isn't structurally valid SGF.
    """
    collection = parse_collection(text)
    if collection:
        return collection[0]
    return GameTree()


def to_text(item):
    """
    Return the canonical SGF text of an `SgfToken`, `Node`, `GameTree`, or
    `Collection`.
    """
    return str(item)


class CLI:

    """
    Abstract base class that supports command-line interface tools.
    Subclasses must define:

    * An ``execute`` method as follows::

          def execute(self):
              # do everything here
              # return an exit status, or None for success

    * `argument_specs`, the CLI arguments & options specifications, used as
      the arguments to `argparse.add_argument`::

          argument_specs = (
              (# Argument name or option flags (a tuple):
               ('name',),
               # Keyword arguments (a dictionary):
               {'default': None,
                'metavar': 'NAME',
                'help': ('Name that name.')}),
              # ...
              )

    * A class docstring that will be used as the description for the CLI
      --help.

    The command-line front end tool itself needs only two lines:

        import sgfparser
        sgfparser.AuditCLI.main()
    """

    def __init__(self, settings=None, argv=None):
        """Instantiate to process the command-line arguments."""
        if settings is None:
            settings = self.process_command_line(argv)
        self.settings = settings

    @classmethod
    def main(cls, argv=None):
        """Entry point: process `argv`, run, and exit with the status."""
        sys.exit(cls(argv=argv).run())

    def run(self):
        try:
            return self.execute()
        except Exception:
            print(
                '\n{}'.format(
                    datetime.datetime.now().isoformat(
                        sep=' ', timespec='seconds')),
                file=sys.stderr)
            raise

    help_option_spec = (
        ('--help', '-h',),
        {'action': 'help', 'help': 'Show this help message.'})

    @classmethod
    def process_command_line(cls, argv=None):
        """
        Return `settings`, a namespace of options & arguments to their values.

        `argv` is a list of arguments; pass `None` (the default) to use the
        command-line arguments (``sys.argv[1:]``).

        The subclass must declare `argument_specs`, the CLI arguments &
        options specifications. See the class docstring.
        """
        parser = argparse.ArgumentParser(
            description=textwrap.dedent(cls.__doc__),
            formatter_class=argparse.RawDescriptionHelpFormatter,
            # Help option added manually (below) for consistency:
            add_help=False,)
        for names, params in cls.argument_specs:
            parser.add_argument(*names, **params)
        names, params = cls.help_option_spec
        parser.add_argument(*names, **params)
        if argv is None:
            argv = sys.argv[1:]
        settings = parser.parse_args(argv)
        return settings


class NormalizerCLI(CLI):

    # Command-Line Interface implementation.

    """
    Rewrite an SGF file (collection of game trees) in canonical form: the
    properties of each node sorted, repeated properties compacted
    (``AB[aa]AB[bb]`` => ``AB[aa][bb]``), and values re-escaped.
    Unrecognized & invalid properties are kept as they are.

    Optionally strip out all variations (keep main game only).
    """

    def execute(self):
        collection = Collection.load(self.settings.source_file)
        if self.settings.main:
            collection = Collection(game.trunk() for game in collection)
        collection.save(self.settings.output)

    argument_specs = (
        (('source_file',),
         {'type': str,
          'nargs': '?',
          'default': None,
          'help': ('Path to the SGF file to normalize. '
                   'Omit or use "-" to read from the standard input.')}),
        (('--output', '-o',),
         {'default': None,
          'help': ('Specify output SGF file path (default: "-", output to '
                   '<stdout>, standard output.')}),
        (('--main', '-m',),
         {'action': 'store_true',
          'default': False,
          'help': 'Output the main game only. Strip out all variations.'}),
        )


class AuditCLI(CLI):

    # Command-Line Interface implementation.

    """
    Read one or more SGF (Smart Game Format) files and report, for each game,
    the properties that could not be interpreted: unknown property IDs and
    recognized properties with invalid values. One summary line is output
    per game, followed by one indented line per problem property:

        path    game number    unknown nodes    invalid nodes    longest line

    Files that are not valid SGF are reported to standard error, and make the
    exit status 1.
    """

    def execute(self):
        """
        Iterate through SGF files, outputting audits.
        """
        failures = 0
        for file_path in self.source_paths():
            try:
                collection = Collection.load(file_path)
            except ParseError as error:
                print(f'Not a valid SGF file: "{file_path}" ({error})',
                      file=sys.stderr)
                failures += 1
                continue
            except OSError as error:
                print(f'Unable to read "{file_path}" ({error})',
                      file=sys.stderr)
                failures += 1
                continue
            for (gamenum, game) in enumerate(collection):
                self.report(file_path, gamenum, game)
        return 1 if failures else 0

    def source_paths(self):
        for path in self.settings.source_file_or_dir_paths:
            if os.path.isdir(path):
                srcpath = path
                srcfiles = sorted(os.listdir(path))
            else:
                srcpath, srcfile = os.path.split(path)
                srcfiles = [srcfile]
            for filename in srcfiles:
                file_path = os.path.join(srcpath, filename)
                if os.path.isdir(file_path):
                    # ignore subdirectories
                    continue
                yield file_path

    def report(self, file_path, gamenum, game):
        unknown_nodes = game.get_unknown_nodes()
        invalid_nodes = game.get_invalid_nodes()
        print(f'{file_path}\t{gamenum}\t{len(unknown_nodes)}\t'
              f'{len(invalid_nodes)}\t{game.count_max_nodes()}')
        if self.settings.quiet:
            return
        for node in unknown_nodes:
            for token in node.get_unknown_tokens():
                print(f'\tunknown: {token}')
        for node in invalid_nodes:
            for token in node.get_invalid_tokens():
                print(f'\tinvalid: {token}')

    argument_specs = (
        (('source_file_or_dir_paths',),
         {'type': str,
          'nargs': '+',
          'help': ('Paths to SGF files or directories containing SGF files '
                   'to audit.')}),
        (('--quiet', '-q',),
         {'action': 'store_true',
          'default': False,
          'help': 'Output the summary lines only.'}),
        )


if __name__ == '__main__':
    print(__doc__)
