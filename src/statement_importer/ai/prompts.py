"""Prompt templates for vision-model statement extraction.

Prompts are versioned so stored extractions can be traced back to the
instructions that produced them.
"""

from __future__ import annotations

from dataclasses import dataclass, field

# v1.0: Initial bank statement extraction prompt
PROMPT_VERSION = "v1.0"


def _bank_statement_schema() -> dict:
    return {
        "type": "object",
        "properties": {
            "bank_name": {
                "type": "string",
                "description": "Name of the bank",
            },
            "account_number": {
                "type": "string",
                "description": "Account number (last 4 digits only for privacy)",
            },
            "statement_period": {
                "type": "object",
                "properties": {
                    "start_date": {
                        "type": "string",
                        "description": "Start date in YYYY-MM-DD format",
                    },
                    "end_date": {
                        "type": "string",
                        "description": "End date in YYYY-MM-DD format",
                    },
                },
            },
            "currency": {
                "type": "string",
                "description": "Primary currency code (e.g., EUR, USD)",
            },
            "transactions": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "date": {
                            "type": "string",
                            "description": "Transaction date in YYYY-MM-DD format",
                        },
                        "description": {
                            "type": "string",
                            "description": "Transaction description or reference",
                        },
                        "amount": {
                            "type": "number",
                            "description": "Transaction amount (positive value)",
                        },
                        "type": {
                            "type": "string",
                            "enum": ["debit", "credit"],
                            "description": "debit (money out) or credit (money in)",
                        },
                    },
                    "required": ["date", "description", "amount", "type"],
                },
            },
        },
        "required": ["transactions"],
    }


@dataclass
class BankStatementPrompt:
    """Prompt template for bank statement extraction.

    Attributes:
        version: Prompt version for provenance.
        schema_name: Name passed to providers that label structured output.
        schema: JSON schema the response must satisfy.
        prompt: Instruction text sent alongside the page images.
    """

    version: str = PROMPT_VERSION
    schema_name: str = "bank_statement"
    schema: dict = field(default_factory=_bank_statement_schema)

    prompt: str = """You are an expert at extracting transaction data from bank statements.

Analyze the provided bank statement image(s) and extract ALL transactions.

For each transaction, extract:
1. Date: The transaction date in YYYY-MM-DD format
2. Description: The full transaction description/reference
3. Amount: The numeric amount (always positive, without currency symbols)
4. Type: "debit" if money was withdrawn/spent, "credit" if money was received/deposited

Important rules:
- Extract EVERY transaction visible in the statement
- Convert all dates to YYYY-MM-DD format
- Amounts should be positive numbers (the type field indicates debit/credit)
- Do NOT skip any transactions
- If you can identify the bank name, account number (last 4 digits only), or statement period, include them

If there are multiple pages, process ALL of them and combine the results.

Return the data in the specified JSON format."""
