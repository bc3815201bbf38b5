"""
Transaction submission shared by deployment and committed calls
"""

from typing import Dict, Any

from web3 import Web3


def prepare_transaction(w3: Web3, sender: str, tx: Dict[str, Any]) -> Dict[str, Any]:
    """
    Fill in nonce, gas price, chain id and gas of a legacy transaction

    Gas estimation executes the transaction, so a reverting call raises
    web3's ContractLogicError here, before anything is sent.
    """
    transaction = dict(tx)
    transaction['from'] = sender
    transaction.setdefault('nonce', w3.eth.get_transaction_count(sender, 'pending'))
    transaction.setdefault('gasPrice', w3.eth.gas_price)
    transaction.setdefault('chainId', w3.eth.chain_id)
    transaction.setdefault('value', 0)
    if 'gas' not in transaction:
        # 20% headroom over the estimate
        transaction['gas'] = int(w3.eth.estimate_gas(transaction) * 1.2)
    return transaction


def sign_and_send(w3: Web3, account, transaction: Dict[str, Any], timeout: int = 30):
    """
    Sign with the account key, send and wait for the receipt

    Returns:
        Transaction receipt (status is not checked here)
    """
    signed_txn = w3.eth.account.sign_transaction(transaction, account.key)

    # web3 v6 names it rawTransaction, v7 raw_transaction
    raw_tx = getattr(signed_txn, 'raw_transaction', None) or getattr(signed_txn, 'rawTransaction', None)
    if raw_tx is None:
        raise AttributeError("Cannot get raw transaction from signed transaction")

    tx_hash = w3.eth.send_raw_transaction(raw_tx)
    return w3.eth.wait_for_transaction_receipt(tx_hash, timeout=timeout)
