"""Prompts shared by remote extraction adapters."""

EXTRACTION_PROMPT = """\
Extract the data of this invoice. Only report what is clearly visible on the
document and copy codes and numbers exactly as printed. Use null for optional
fields that are not present.

Check every line: quantity times unit price should equal the line total, and
the line totals should add up to the invoice total. Re-read any digit that
does not fit before answering.

Respond only in JSON with this shape:
{
  "invoiceCode": string,
  "issueDate": "YYYY-MM-DD",
  "totalAmount": number,
  "provider": {"name": string, "cif": string, "email": string | null,
               "phone": string | null, "address": string | null},
  "items": [{"materialName": string, "materialDescription": string | null,
             "materialCode": string | null, "quantity": number,
             "unitPrice": number, "totalPrice": number,
             "itemDate": "YYYY-MM-DD" | null, "workOrder": string | null}]
}"""
