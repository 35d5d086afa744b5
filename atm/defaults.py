"""Shared defaults for the ATM ledger and UI."""

ASSESSMENT_CONTRACT = """\
owner = Variable()
balance = Variable()


@construct
def seed(initial_balance: int):
    assert initial_balance >= 0, 'InvalidAmount:' + str(initial_balance)

    owner.set(ctx.signer)
    balance.set(initial_balance)


@export
def get_balance():
    return balance.get()


@export
def get_owner():
    return owner.get()


@export
def deposit(amount: int):
    assert ctx.caller == owner.get(), 'Unauthorized:' + str(ctx.caller)
    assert amount >= 0, 'InvalidAmount:' + str(amount)

    previous = balance.get()
    balance.set(previous + amount)

    assert balance.get() == previous + amount, 'LedgerInvariant:deposit'
    return {'kind': 'Deposit', 'value': amount}


@export
def withdraw(amount: int):
    assert ctx.caller == owner.get(), 'Unauthorized:' + str(ctx.caller)
    assert amount >= 0, 'InvalidAmount:' + str(amount)

    previous = balance.get()
    assert amount <= previous, 'InsufficientBalance:' + str(previous) + ':' + str(amount)

    balance.set(previous - amount)

    assert balance.get() == previous - amount, 'LedgerInvariant:withdraw'
    return {'kind': 'Withdraw', 'value': amount}


@export
def double_balance():
    assert ctx.caller == owner.get(), 'Unauthorized:' + str(ctx.caller)

    doubled = balance.get() * 2
    balance.set(doubled)
    return {'kind': 'BalanceDoubled', 'value': doubled}
"""

DEFAULT_LEDGER_ADDRESS = "con_assessment"
# Hardhat's first development account.
DEFAULT_LEDGER_OWNER = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"
WEI_PER_ETHER = 10**18
DEFAULT_INITIAL_BALANCE = WEI_PER_ETHER
DEFAULT_PRICE_URL = "https://api.coingecko.com/api/v3/simple/price"
PRICE_ASSET_ID = "ethereum"
PRICE_CURRENCY = "usd"
