from fastapi import APIRouter, Depends

from bookvault.api.deps import get_container
from bookvault.services.container import ServiceContainer


router = APIRouter(prefix="/wallet", tags=["wallet"])


@router.get("/balances")
def get_wallet_balances(container: ServiceContainer = Depends(get_container)) -> dict:
    snapshot = container.wallet.get_balances()
    return {
        "address": snapshot.address,
        "coins": [
            {
                "coinType": coin.coin_type,
                "symbol": coin.symbol,
                "totalBalance": coin.total_balance,
                "decimals": coin.decimals,
            }
            for coin in snapshot.coins
        ],
    }
