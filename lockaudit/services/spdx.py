"""SPDX license identifiers and a recursive-descent expression parser."""
import re
from dataclasses import dataclass

from lockaudit.core.errors import InvalidLicenseExpression
from lockaudit.models.license import LicenseCategory


@dataclass(frozen=True)
class LicenseInfo:
    id: str
    name: str
    osi_approved: bool
    category: LicenseCategory


def _table(category: LicenseCategory, *rows: tuple[str, str, bool]) -> dict[str, LicenseInfo]:
    return {row[0]: LicenseInfo(row[0], row[1], row[2], category) for row in rows}


LICENSES: dict[str, LicenseInfo] = {
    **_table(
        LicenseCategory.PERMISSIVE,
        ('MIT', 'MIT License', True),
        ('Apache-2.0', 'Apache License 2.0', True),
        ('BSD-1-Clause', 'BSD 1-Clause License', True),
        ('BSD-2-Clause', 'BSD 2-Clause "Simplified" License', True),
        ('BSD-3-Clause', 'BSD 3-Clause "New" or "Revised" License', True),
        ('ISC', 'ISC License', True),
        ('Zlib', 'zlib License', True),
        ('0BSD', 'BSD Zero Clause License', True),
        ('WTFPL', 'Do What The F*ck You Want To Public License', False),
        ('CC-BY-4.0', 'Creative Commons Attribution 4.0 International', False),
        ('PostgreSQL', 'PostgreSQL License', True),
        ('BlueOak-1.0.0', 'Blue Oak Model License 1.0.0', False),
        ('Artistic-2.0', 'Artistic License 2.0', True),
        ('BSL-1.0', 'Boost Software License 1.0', True),
        ('MS-PL', 'Microsoft Public License', True),
        ('ECL-2.0', 'Educational Community License v2.0', True),
        ('AFL-3.0', 'Academic Free License v3.0', True),
        ('Python-2.0', 'Python License 2.0', True),
        ('Ruby', 'Ruby License', False),
        ('Unicode-DFS-2016', 'Unicode License Agreement - Data Files and Software (2016)', False),
        ('Vim', 'Vim License', False),
        ('NCSA', 'University of Illinois/NCSA Open Source License', True),
        ('X11', 'X11 License', False),
        ('Libpng', 'libpng License', False),
        ('curl', 'curl License', False),
    ),
    **_table(
        LicenseCategory.PUBLIC_DOMAIN,
        ('Unlicense', 'The Unlicense', True),
        ('CC0-1.0', 'Creative Commons Zero v1.0 Universal', False),
    ),
    **_table(
        LicenseCategory.WEAK_COPYLEFT,
        ('MPL-2.0', 'Mozilla Public License 2.0', True),
        ('LGPL-2.1-only', 'GNU Lesser General Public License v2.1 only', True),
        ('LGPL-2.1-or-later', 'GNU Lesser General Public License v2.1 or later', True),
        ('LGPL-3.0-only', 'GNU Lesser General Public License v3.0 only', True),
        ('LGPL-3.0-or-later', 'GNU Lesser General Public License v3.0 or later', True),
        ('EPL-1.0', 'Eclipse Public License 1.0', True),
        ('EPL-2.0', 'Eclipse Public License 2.0', True),
        ('CC-BY-SA-4.0', 'Creative Commons Attribution Share Alike 4.0 International', False),
        ('EUPL-1.2', 'European Union Public License 1.2', True),
        ('MS-RL', 'Microsoft Reciprocal License', True),
        ('CDDL-1.0', 'Common Development and Distribution License 1.0', True),
        ('CPAL-1.0', 'Common Public Attribution License 1.0', True),
        ('MulanPSL-2.0', 'Mulan Permissive Software License, Version 2', True),
    ),
    **_table(
        LicenseCategory.STRONG_COPYLEFT,
        ('GPL-2.0-only', 'GNU General Public License v2.0 only', True),
        ('GPL-2.0-or-later', 'GNU General Public License v2.0 or later', True),
        ('GPL-3.0-only', 'GNU General Public License v3.0 only', True),
        ('GPL-3.0-or-later', 'GNU General Public License v3.0 or later', True),
        ('AGPL-3.0-only', 'GNU Affero General Public License v3.0', True),
        ('AGPL-3.0-or-later', 'GNU Affero General Public License v3.0 or later', True),
        ('OSL-3.0', 'Open Software License 3.0', True),
    ),
    **_table(
        LicenseCategory.NON_COMMERCIAL,
        ('CC-BY-NC-4.0', 'Creative Commons Attribution NonCommercial 4.0 International', False),
        ('CC-BY-NC-SA-4.0', 'Creative Commons Attribution NonCommercial ShareAlike 4.0 International', False),
    ),
    **_table(
        LicenseCategory.PROPRIETARY,
        ('SSPL-1.0', 'Server Side Public License, v 1', False),
        ('BSL-1.1', 'Business Source License 1.1', False),
    ),
}

COPYLEFT_CATEGORIES = frozenset({LicenseCategory.WEAK_COPYLEFT, LicenseCategory.STRONG_COPYLEFT})

# least to most restrictive
RESTRICTIVENESS = (
    LicenseCategory.PUBLIC_DOMAIN,
    LicenseCategory.PERMISSIVE,
    LicenseCategory.WEAK_COPYLEFT,
    LicenseCategory.STRONG_COPYLEFT,
    LicenseCategory.NON_COMMERCIAL,
    LicenseCategory.PROPRIETARY,
    LicenseCategory.UNKNOWN,
)

OPERATORS = ('AND', 'OR', 'WITH')


@dataclass(frozen=True)
class SimpleExpression:
    id: str
    or_later: bool = False

    def license_ids(self) -> list[str]:
        return [self.id]

    def satisfied_by(self, allowed: set[str]) -> bool:
        return self.id in allowed

    def category(self) -> LicenseCategory:
        return category_for(self.id)


@dataclass(frozen=True)
class WithExpression:
    license: SimpleExpression
    exception: str

    def license_ids(self) -> list[str]:
        return self.license.license_ids()

    def satisfied_by(self, allowed: set[str]) -> bool:
        return self.license.satisfied_by(allowed)

    def category(self) -> LicenseCategory:
        return self.license.category()


@dataclass(frozen=True)
class AndExpression:
    left: 'Expression'
    right: 'Expression'

    def license_ids(self) -> list[str]:
        return self.left.license_ids() + self.right.license_ids()

    def satisfied_by(self, allowed: set[str]) -> bool:
        return self.left.satisfied_by(allowed) and self.right.satisfied_by(allowed)

    def category(self) -> LicenseCategory:
        # both terms apply, so the stricter one wins
        return max(self.left.category(), self.right.category(), key=RESTRICTIVENESS.index)


@dataclass(frozen=True)
class OrExpression:
    left: 'Expression'
    right: 'Expression'

    def license_ids(self) -> list[str]:
        return self.left.license_ids() + self.right.license_ids()

    def satisfied_by(self, allowed: set[str]) -> bool:
        return self.left.satisfied_by(allowed) or self.right.satisfied_by(allowed)

    def category(self) -> LicenseCategory:
        return min(self.left.category(), self.right.category(), key=RESTRICTIVENESS.index)


Expression = SimpleExpression | WithExpression | AndExpression | OrExpression

_TOKEN_RE = re.compile(r'\(|\)|[^\s()]+')


def tokenize(text: str) -> list[str]:
    tokens = []
    for token in _TOKEN_RE.findall(text):
        # 'GPL-2.0+' is an identifier followed by the or-later marker
        if len(token) > 1 and token.endswith('+'):
            tokens.extend([token[:-1], '+'])
        else:
            tokens.append(token)
    return tokens


class Parser:
    """
    Grammar::

        or   := and ('OR' and)*
        and  := atom ('AND' atom)*
        atom := '(' or ')' | id ['+'] ['WITH' exception]
    """

    def __init__(self, text: str):
        self.text = text
        self.tokens = tokenize(text)
        self.pos = 0

    def _peek(self) -> str | None:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def _advance(self) -> str:
        token = self.tokens[self.pos]
        self.pos += 1
        return token

    def parse(self) -> Expression:
        if not self.tokens:
            raise InvalidLicenseExpression('empty license expression')
        expr = self._parse_or()
        if self.pos < len(self.tokens):
            raise InvalidLicenseExpression(
                f"unexpected token '{self.tokens[self.pos]}' in '{self.text}'",
            )
        return expr

    def _parse_or(self) -> Expression:
        left = self._parse_and()
        while self._peek() == 'OR':
            self._advance()
            left = OrExpression(left, self._parse_and())
        return left

    def _parse_and(self) -> Expression:
        left = self._parse_atom()
        while self._peek() == 'AND':
            self._advance()
            left = AndExpression(left, self._parse_atom())
        return left

    def _parse_atom(self) -> Expression:
        token = self._peek()
        if token is None:
            raise InvalidLicenseExpression(f"unexpected end of '{self.text}'")
        if token == '(':
            self._advance()
            expr = self._parse_or()
            if self._peek() != ')':
                raise InvalidLicenseExpression(f"missing ')' in '{self.text}'")
            self._advance()
            return expr

        license_id = self._advance()
        if license_id in (*OPERATORS, '+', ')'):
            raise InvalidLicenseExpression(
                f"expected a license identifier but got '{license_id}' in '{self.text}'",
            )
        or_later = False
        if self._peek() == '+':
            self._advance()
            or_later = True
        simple = SimpleExpression(license_id, or_later)

        if self._peek() == 'WITH':
            self._advance()
            exception = self._peek()
            if exception is None or exception in (*OPERATORS, '(', ')', '+'):
                raise InvalidLicenseExpression(f"expected an exception after WITH in '{self.text}'")
            self._advance()
            return WithExpression(simple, exception)
        return simple


def parse(text: str) -> Expression:
    return Parser(text).parse()


def lookup(license_id: str) -> LicenseInfo | None:
    return LICENSES.get(license_id)


def is_valid_id(license_id: str) -> bool:
    return license_id in LICENSES or license_id.startswith('LicenseRef-')


def category_for(license_id: str) -> LicenseCategory:
    info = LICENSES.get(license_id)
    return info.category if info else LicenseCategory.UNKNOWN


def validate(text: str) -> Expression:
    """Parse and check every identifier; raises InvalidLicenseExpression."""
    expr = parse(text)
    unknown = [i for i in expr.license_ids() if not is_valid_id(i)]
    if unknown:
        raise InvalidLicenseExpression(f"unknown license identifier '{unknown[0]}'")
    return expr
