"""
Normalized view of a confirmed transaction.

RPC responses vary: legacy vs. versioned (v0) messages, raw (`json`) vs. decoded
(`jsonParsed`) instruction lists, and account keys that are partly loaded from
address lookup tables. `TransactionRecord.from_rpc` folds all of these into one
shape so verification strategies never look at the raw response.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

import base58

from gasless.errors import MalformedDataError


@dataclass(frozen=True)
class TokenBalance:
    """One entry of meta.preTokenBalances / meta.postTokenBalances."""
    account_index: int
    mint: str
    amount: int
    owner: Optional[str] = None
    account: Optional[str] = None
    program_id: Optional[str] = None


@dataclass(frozen=True)
class InstructionRecord:
    """A top-level or inner instruction with account indices resolved to addresses."""
    program_id: str
    accounts: List[str] = field(default_factory=list)
    data: Optional[bytes] = None
    program: Optional[str] = None
    parsed: Optional[Dict[str, Any]] = None
    stack_height: Optional[int] = None
    parent_index: Optional[int] = None

    @property
    def is_inner(self) -> bool:
        return self.parent_index is not None


@dataclass
class TransactionRecord:
    signature: str
    account_keys: List[str]
    instructions: List[InstructionRecord]
    inner_instructions: List[InstructionRecord]
    pre_token_balances: List[TokenBalance]
    post_token_balances: List[TokenBalance]
    log_messages: List[str]
    error: Any = None
    version: Union[int, str, None] = None
    slot: Optional[int] = None
    fee: Optional[int] = None
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def succeeded(self) -> bool:
        return self.error is None

    @property
    def is_versioned(self) -> bool:
        return self.version not in (None, 'legacy')

    def account_index(self, address: str) -> Optional[int]:
        try:
            return self.account_keys.index(address)
        except ValueError:
            return None

    def evidence(self) -> Dict[str, Any]:
        """Compact, JSON-serialisable summary stored with a payment for audit."""
        return {
            'signature': self.signature,
            'slot': self.slot,
            'version': self.version,
            'error': self.error,
            'accountKeys': self.account_keys,
            'preTokenBalances': [_balance_evidence(b) for b in self.pre_token_balances],
            'postTokenBalances': [_balance_evidence(b) for b in self.post_token_balances],
            'logMessages': self.log_messages,
        }

    @classmethod
    def from_rpc(cls, signature: str, result: Dict[str, Any]) -> 'TransactionRecord':
        """
        Build a record from a `getTransaction` result object.

        Raises:
            MalformedDataError: if the response does not have the expected shape
        """
        if not isinstance(result, dict):
            raise MalformedDataError('Transaction result is not an object', signature, result)

        transaction = result.get('transaction')
        meta = result.get('meta')
        if not isinstance(transaction, dict) or not isinstance(meta, dict):
            raise MalformedDataError('Transaction result is missing transaction or meta', signature, result)

        message = transaction.get('message')
        if not isinstance(message, dict):
            raise MalformedDataError('Transaction message is missing', signature, result)

        account_keys = _resolve_account_keys(signature, message, meta, result)

        instructions = [
            _parse_instruction(signature, raw_ix, account_keys, result)
            for raw_ix in _as_list(signature, message.get('instructions'), 'instructions', result)
        ]

        inner_instructions: List[InstructionRecord] = []
        for group in _as_list(signature, meta.get('innerInstructions'), 'innerInstructions', result):
            if not isinstance(group, dict):
                raise MalformedDataError('Inner instruction group is not an object', signature, result)
            parent_index = group.get('index')
            for raw_ix in _as_list(signature, group.get('instructions'), 'innerInstructions', result):
                inner_instructions.append(
                    _parse_instruction(signature, raw_ix, account_keys, result, parent_index=parent_index)
                )

        pre_balances = [
            _parse_token_balance(signature, entry, account_keys, result)
            for entry in _as_list(signature, meta.get('preTokenBalances'), 'preTokenBalances', result)
        ]
        post_balances = [
            _parse_token_balance(signature, entry, account_keys, result)
            for entry in _as_list(signature, meta.get('postTokenBalances'), 'postTokenBalances', result)
        ]

        log_messages = _as_list(signature, meta.get('logMessages'), 'logMessages', result)

        return cls(
            signature=signature,
            account_keys=account_keys,
            instructions=instructions,
            inner_instructions=inner_instructions,
            pre_token_balances=pre_balances,
            post_token_balances=post_balances,
            log_messages=[str(line) for line in log_messages],
            error=meta.get('err'),
            version=result.get('version'),
            slot=result.get('slot'),
            fee=meta.get('fee'),
            raw=result,
        )


def _balance_evidence(balance: TokenBalance) -> Dict[str, Any]:
    return {
        'accountIndex': balance.account_index,
        'account': balance.account,
        'mint': balance.mint,
        'owner': balance.owner,
        'amount': str(balance.amount),
    }


def _as_list(signature: str, value: Any, name: str, raw: Dict[str, Any]) -> list:
    if value is None:
        return []
    if not isinstance(value, list):
        raise MalformedDataError(f'Expected a list for {name}', signature, raw)
    return value


def _resolve_account_keys(
    signature: str,
    message: Dict[str, Any],
    meta: Dict[str, Any],
    raw: Dict[str, Any],
) -> List[str]:
    keys = _as_list(signature, message.get('accountKeys'), 'accountKeys', raw)
    if not keys:
        raise MalformedDataError('Transaction has no account keys', signature, raw)

    # jsonParsed responses list every key (including lookup-table ones) as objects
    if all(isinstance(key, dict) for key in keys):
        resolved = []
        for key in keys:
            pubkey = key.get('pubkey')
            if not isinstance(pubkey, str):
                raise MalformedDataError('Account key object without pubkey', signature, raw)
            resolved.append(pubkey)
        return resolved

    if not all(isinstance(key, str) for key in keys):
        raise MalformedDataError('Account keys have mixed types', signature, raw)

    # Raw v0 responses only carry static keys; lookup-table addresses follow as
    # writable then readonly, matching the index space used by instructions.
    resolved = list(keys)
    loaded = meta.get('loadedAddresses') or {}
    if not isinstance(loaded, dict):
        raise MalformedDataError('loadedAddresses is not an object', signature, raw)
    for bucket in ('writable', 'readonly'):
        for address in _as_list(signature, loaded.get(bucket), f'loadedAddresses.{bucket}', raw):
            if not isinstance(address, str):
                raise MalformedDataError('Loaded address is not a string', signature, raw)
            resolved.append(address)
    return resolved


def _decode_data(signature: str, data: Any, raw: Dict[str, Any]) -> Optional[bytes]:
    if data is None:
        return None
    if not isinstance(data, str):
        raise MalformedDataError('Instruction data is not a base58 string', signature, raw)
    try:
        return base58.b58decode(data)
    except ValueError as exc:
        raise MalformedDataError(f'Instruction data is not valid base58: {exc}', signature, raw) from exc


def _lookup(signature: str, account_keys: List[str], index: Any, raw: Dict[str, Any]) -> str:
    if not isinstance(index, int) or isinstance(index, bool) or not 0 <= index < len(account_keys):
        raise MalformedDataError(f'Account index {index!r} out of range', signature, raw)
    return account_keys[index]


def _parse_instruction(
    signature: str,
    raw_ix: Any,
    account_keys: List[str],
    raw: Dict[str, Any],
    parent_index: Optional[int] = None,
) -> InstructionRecord:
    if not isinstance(raw_ix, dict):
        raise MalformedDataError('Instruction is not an object', signature, raw)

    stack_height = raw_ix.get('stackHeight')

    # Raw encoding: indices into the resolved account key list
    if 'programIdIndex' in raw_ix:
        program_id = _lookup(signature, account_keys, raw_ix['programIdIndex'], raw)
        accounts = [
            _lookup(signature, account_keys, idx, raw)
            for idx in _as_list(signature, raw_ix.get('accounts'), 'instruction accounts', raw)
        ]
        return InstructionRecord(
            program_id=program_id,
            accounts=accounts,
            data=_decode_data(signature, raw_ix.get('data'), raw),
            stack_height=stack_height,
            parent_index=parent_index,
        )

    # jsonParsed encoding: addresses inline, decoded payload when the program is known
    program_id = raw_ix.get('programId')
    if not isinstance(program_id, str):
        raise MalformedDataError('Instruction has no program id', signature, raw)

    parsed = raw_ix.get('parsed')
    if parsed is not None and not isinstance(parsed, dict):
        # Some programs (memo) are "parsed" into a bare string
        parsed = {'type': None, 'info': parsed}

    accounts = _as_list(signature, raw_ix.get('accounts'), 'instruction accounts', raw)
    if not all(isinstance(account, str) for account in accounts):
        raise MalformedDataError('Decoded instruction accounts must be addresses', signature, raw)

    return InstructionRecord(
        program_id=program_id,
        accounts=list(accounts),
        data=_decode_data(signature, raw_ix.get('data'), raw),
        program=raw_ix.get('program'),
        parsed=parsed,
        stack_height=stack_height,
        parent_index=parent_index,
    )


def _parse_token_balance(
    signature: str,
    entry: Any,
    account_keys: List[str],
    raw: Dict[str, Any],
) -> TokenBalance:
    if not isinstance(entry, dict):
        raise MalformedDataError('Token balance entry is not an object', signature, raw)

    account_index = entry.get('accountIndex')
    mint = entry.get('mint')
    if not isinstance(account_index, int) or isinstance(account_index, bool) or account_index < 0:
        raise MalformedDataError('Token balance has an invalid accountIndex', signature, raw)
    if not isinstance(mint, str):
        raise MalformedDataError('Token balance has no mint', signature, raw)

    ui_amount = entry.get('uiTokenAmount')
    if not isinstance(ui_amount, dict):
        raise MalformedDataError('Token balance has no uiTokenAmount', signature, raw)
    try:
        amount = int(str(ui_amount.get('amount')))
    except (TypeError, ValueError) as exc:
        raise MalformedDataError('Token balance amount is not an integer', signature, raw) from exc

    # An index outside the key list is kept (account=None); strategies that
    # match on owner/mint can still use the entry.
    account = account_keys[account_index] if account_index < len(account_keys) else None

    return TokenBalance(
        account_index=account_index,
        mint=mint,
        amount=amount,
        owner=entry.get('owner'),
        account=account,
        program_id=entry.get('programId'),
    )
