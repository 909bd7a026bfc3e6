from decimal import Decimal
from typing import Annotated

from pydantic import PlainSerializer

from cafeteria.services.pricing import round_money

# Decimal amount rendered with two decimal places in responses.
Money = Annotated[Decimal, PlainSerializer(round_money, return_type=Decimal, when_used="always")]
