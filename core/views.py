from django.http import HttpResponse, JsonResponse

ENDPOINTS = (
    ('GET', '/gasless/quote', 'Token, amount and destination account for one credit purchase.'),
    ('POST', '/gasless/x402/verify', 'Check a signed x402 payment before sending it.'),
    ('POST', '/gasless/payments', 'Record a confirmed payment signature and receive credit.'),
    ('GET', '/gasless/credit/&lt;user&gt;', 'Available, used and total credit.'),
    ('GET', '/gasless/payments/&lt;user&gt;', 'Recent payments, newest first.'),
    ('POST', '/gasless/sponsor', 'Spend credit to have a transaction fee paid for you.'),
)

HOME_PAGE_HTML = """<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="UTF-8" />
<title>Gasless Credit</title>
<style>
    body {{ font-family: sans-serif; max-width: 44rem; margin: 3rem auto; padding: 0 1rem; }}
    td {{ padding: 0.3rem 0.8rem 0.3rem 0; vertical-align: top; }}
</style>
</head>
<body>
<h1>Gasless Credit</h1>
<p>Pay a small USDC amount once, then have network fees sponsored out of that credit, oldest payment first.</p>
<table>
{rows}
</table>
</body>
</html>"""


def home(request):
    rows = '\n'.join(
        f'<tr><td>{method}</td><td><code>{path}</code></td><td>{summary}</td></tr>'
        for method, path, summary in ENDPOINTS
    )
    return HttpResponse(HOME_PAGE_HTML.format(rows=rows), content_type="text/html; charset=utf-8")


def health(request):
    return JsonResponse({"status": "ok"})
