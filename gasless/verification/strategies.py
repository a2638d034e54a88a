"""
Amount-extraction strategies over a normalized `TransactionRecord`.

Each strategy answers one question: "how much of the target token reached the
target account in this transaction?" and returns None when the transaction
carries no data the strategy can use. Strategies are ordered from the most to
the least direct evidence; the verifier stops at the first one that returns an
amount.
"""
import re
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional, Set, Tuple

from loguru import logger

from gasless.chain.addresses import TOKEN_PROGRAM_IDS, TOKEN_PROGRAM_LABELS, candidate_token_accounts
from gasless.chain.records import InstructionRecord, TokenBalance, TransactionRecord
from gasless.errors import MalformedDataError


# SPL token instruction discriminators
TRANSFER = 3
TRANSFER_CHECKED = 12

DECODED_TRANSFER_TYPES = {'transfer', 'transferChecked'}

PROGRAM_INVOKE_RE = re.compile(r'^Program (\w+) invoke')
PROGRAM_EXIT_RE = re.compile(r'^Program (\w+) (success|failed)')
LOG_AMOUNT_PATTERNS = (
    re.compile(r'amount[:=\s]+(\d+)', re.IGNORECASE),
    re.compile(r'(\d+)\s*units', re.IGNORECASE),
)


@dataclass(frozen=True)
class PaymentTarget:
    """What a payment must look like: `expected_amount` of `mint` into the owner's token account."""
    mint: str
    expected_amount: int
    owner: Optional[str] = None
    token_account: Optional[str] = None

    def __post_init__(self):
        if not self.owner and not self.token_account:
            raise ValueError('PaymentTarget needs an owner or a token account')

    def derived_accounts(self) -> Set[str]:
        if not self.owner:
            return set()
        return candidate_token_accounts(self.owner, self.mint)

    def destination_accounts(self) -> Set[str]:
        accounts = self.derived_accounts()
        if self.token_account:
            accounts.add(self.token_account)
        return accounts


@dataclass(frozen=True)
class VerificationStrategy:
    name: str
    extract: Callable[[TransactionRecord, PaymentTarget], Optional[int]]
    permissive: bool = False

    def __call__(self, record: TransactionRecord, target: PaymentTarget) -> Optional[int]:
        return self.extract(record, target)


def _balance_delta(
    record: TransactionRecord,
    mint: str,
    matches: Callable[[TokenBalance], bool],
) -> Optional[int]:
    """Sum of post - pre over every account index whose entries satisfy `matches`."""
    pre = {b.account_index: b.amount for b in record.pre_token_balances if b.mint == mint and matches(b)}
    post = {b.account_index: b.amount for b in record.post_token_balances if b.mint == mint and matches(b)}
    indices = set(pre) | set(post)
    if not indices:
        return None
    return sum(post.get(idx, 0) - pre.get(idx, 0) for idx in indices)


def _parse_amount(record: TransactionRecord, value) -> int:
    try:
        return int(str(value))
    except (TypeError, ValueError) as exc:
        raise MalformedDataError(
            f'Transfer amount {value!r} is not an integer', record.signature, record.evidence()
        ) from exc


def _decode_raw_transfer(ix: InstructionRecord) -> Optional[Tuple[str, int, Optional[str]]]:
    """Return (destination, amount, mint) for a raw Transfer/TransferChecked instruction."""
    data = ix.data
    if not data:
        return None
    # Transfer accounts: [source, destination, authority]
    if data[0] == TRANSFER and len(data) >= 9 and len(ix.accounts) >= 2:
        return ix.accounts[1], int.from_bytes(data[1:9], 'little'), None
    # TransferChecked accounts: [source, mint, destination, authority]
    if data[0] == TRANSFER_CHECKED and len(data) >= 10 and len(ix.accounts) >= 3:
        return ix.accounts[2], int.from_bytes(data[1:9], 'little'), ix.accounts[1]
    return None


def _decode_parsed_transfer(
    record: TransactionRecord,
    ix: InstructionRecord,
) -> Optional[Tuple[str, int, Optional[str]]]:
    parsed = ix.parsed or {}
    if parsed.get('type') not in DECODED_TRANSFER_TYPES:
        return None
    info = parsed.get('info')
    if not isinstance(info, dict):
        raise MalformedDataError('Decoded transfer has no info object', record.signature, record.evidence())
    destination = info.get('destination')
    if not destination:
        return None
    raw_amount = info.get('amount')
    if raw_amount is None:
        raw_amount = (info.get('tokenAmount') or {}).get('amount')
    if raw_amount is None:
        return None
    return destination, _parse_amount(record, raw_amount), info.get('mint')


def _is_token_instruction(ix: InstructionRecord) -> bool:
    return ix.program_id in TOKEN_PROGRAM_IDS or ix.program in TOKEN_PROGRAM_LABELS


def _sum_transfers(
    record: TransactionRecord,
    target: PaymentTarget,
    instructions: Iterable[InstructionRecord],
) -> Optional[int]:
    destinations = target.destination_accounts()
    total: Optional[int] = None
    for ix in instructions:
        if not _is_token_instruction(ix):
            continue
        if ix.parsed is not None:
            transfer = _decode_parsed_transfer(record, ix)
        else:
            transfer = _decode_raw_transfer(ix)
        if transfer is None:
            continue
        destination, amount, mint = transfer
        if destination not in destinations:
            continue
        if mint is not None and mint != target.mint:
            continue
        total = (total or 0) + amount
    return total


def direct_account_match(record: TransactionRecord, target: PaymentTarget) -> Optional[int]:
    """Balance delta of the literal target token account."""
    if not target.token_account:
        return None
    index = record.account_index(target.token_account)
    if index is None:
        return None
    return _balance_delta(record, target.mint, lambda b: b.account_index == index)


def derived_account_match(record: TransactionRecord, target: PaymentTarget) -> Optional[int]:
    """Balance delta of the associated token account recomputed from (owner, mint)."""
    derived = target.derived_accounts()
    if not derived:
        return None
    indices = {idx for idx in (record.account_index(a) for a in derived) if idx is not None}
    if not indices:
        return None
    return _balance_delta(
        record,
        target.mint,
        lambda b: b.account_index in indices or b.account in derived,
    )


def balance_table_scan(record: TransactionRecord, target: PaymentTarget) -> Optional[int]:
    """Balance delta of every entry owned by the target owner, ignoring account-key indexing."""
    if not target.owner:
        return None
    return _balance_delta(record, target.mint, lambda b: b.owner == target.owner)


def log_parsing(record: TransactionRecord, target: PaymentTarget) -> Optional[int]:
    """Amounts from token-program transfer log lines that name the target."""
    mentions = target.destination_accounts()
    if target.owner:
        mentions.add(target.owner)

    stack: List[str] = []
    total: Optional[int] = None
    for line in record.log_messages:
        invoke = PROGRAM_INVOKE_RE.match(line)
        if invoke:
            stack.append(invoke.group(1))
            continue
        if PROGRAM_EXIT_RE.match(line):
            if stack:
                stack.pop()
            continue
        if not stack or stack[-1] not in TOKEN_PROGRAM_IDS:
            continue
        if 'transfer' not in line.lower():
            continue
        if not any(address in line for address in mentions):
            continue
        for pattern in LOG_AMOUNT_PATTERNS:
            found = pattern.search(line)
            if found:
                total = (total or 0) + int(found.group(1))
                break
    return total


def inner_instruction_inspection(record: TransactionRecord, target: PaymentTarget) -> Optional[int]:
    """Token transfers reached through cross-program calls, plus undecoded top-level ones."""
    raw_top_level = [ix for ix in record.instructions if ix.parsed is None]
    return _sum_transfers(record, target, [*record.inner_instructions, *raw_top_level])


def decoded_instruction_inspection(record: TransactionRecord, target: PaymentTarget) -> Optional[int]:
    """Named transfer instructions in an already-decoded top-level instruction list."""
    decoded = [ix for ix in record.instructions if ix.parsed is not None]
    return _sum_transfers(record, target, decoded)


def permissive_fallback(record: TransactionRecord, target: PaymentTarget) -> Optional[int]:
    """Largest positive balance increase of the target mint in a successful transaction."""
    if not record.succeeded:
        return None
    pre = {b.account_index: b.amount for b in record.pre_token_balances if b.mint == target.mint}
    post = {b.account_index: b.amount for b in record.post_token_balances if b.mint == target.mint}
    increases = [post.get(idx, 0) - pre.get(idx, 0) for idx in set(pre) | set(post)]
    increases = [delta for delta in increases if delta > 0]
    if not increases:
        return None
    logger.debug('Permissive fallback found mint increases {} in {}', increases, record.signature)
    return max(increases)


DEFAULT_STRATEGIES: Tuple[VerificationStrategy, ...] = (
    VerificationStrategy('direct_account_match', direct_account_match),
    VerificationStrategy('derived_account_match', derived_account_match),
    VerificationStrategy('balance_table_scan', balance_table_scan),
    VerificationStrategy('log_parsing', log_parsing),
    VerificationStrategy('inner_instruction_inspection', inner_instruction_inspection),
    VerificationStrategy('decoded_instruction_inspection', decoded_instruction_inspection),
)

PERMISSIVE_FALLBACK = VerificationStrategy('permissive_fallback', permissive_fallback, permissive=True)


def build_strategies(allow_permissive_fallback: bool = False) -> Tuple[VerificationStrategy, ...]:
    if allow_permissive_fallback:
        return (*DEFAULT_STRATEGIES, PERMISSIVE_FALLBACK)
    return DEFAULT_STRATEGIES
