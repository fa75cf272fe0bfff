from custody.models.deposit import Deposit, DepositStatus
from custody.models.withdrawal import Withdrawal, WithdrawalStatus
