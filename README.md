# imgrelay

These are the parts an image proxy server needs. The package uses only the
Python standard library.

## Modules

- `imgrelay.security` covers URL signatures and source checks.
  - `signature_for` computes a signature: HMAC-SHA256 over salt plus path, cut to the requested size.
  - `verify_signature` accepts a signature that matches any key/salt pair or that is in the trusted list. When no keys or no salts are set, it accepts every signature. On failure it raises `SignatureError`, which carries status 403.
  - `verify_source_url` checks the image URL against a list of compiled regular expressions.
  - `verify_source_network` rejects loopback, link-local or private addresses unless they are allowed. It raises `SourceAddressError`.
  - `SecurityOptions` holds the size limits. `check_file_size`, `limit_file_size` (which returns a `LimitedReader`) and `check_dimensions` enforce them. They raise `SecurityError`, which carries `status_code` and `public_message`.
  - `check_security_options_allowed` raises when per-request security options are turned off.
- `imgrelay.router` holds `Router`, `Request`, `Response`, `RequestTimer` and `RequestError`.
  - The router gives each request an ID. It takes the ID from `X-Request-ID` or from the `x-amzn-request-context` JSON. If neither is usable, it generates one.
  - It answers `/health` through `Router.health_handler` and returns 404 for `/favicon.ico`.
  - It sets the client address from `CF-Connecting-IP`, `X-Forwarded-For` or `X-Real-IP`.
  - It dispatches on method and path prefix, and returns 404 when no route matches.
  - `log_request` and `log_response` write to the standard `logging` module.
- `imgrelay.headers` computes the values of response headers:
  - `cache_control`, `build_vary`, `last_modified` and `canonical_link`;
  - for streaming an original unchanged, `stream_request_headers`, `stream_response_headers` and `stream_filename`.
- `imgrelay.notmodified.not_modified` decides whether a response can be a 304. It compares `If-None-Match` with `ETag`, and `If-Modified-Since` with `Last-Modified`.
- `imgrelay.fs_transport.FileTransport` serves files below a root directory. It supports byte ranges and optional ETags (`build_etag`) and `Last-Modified`. It returns a `FileResponse`.
- `imgrelay.svg` has two functions:
  - `sanitize` drops `<script>` elements, event-handler attributes and external `<use>` references.
  - `fix_unsupported` rewrites `feDropShadow` into basic filter primitives. Both raise `SvgError` on bad input.
- `imgrelay.bmp` handles BMP data:
  - `load_bmp` decodes 1/2/4/8-bit paletted (including RLE), 16-, 24- and 32-bit BMPs into a `Bitmap`.
  - `save_bmp` writes a 24-bit BMP.
- `imgrelay.ico` has two helpers:
  - `pack_ico` wraps PNG data in a single-image ICO.
  - `fix_bmp_header` turns a bitmap embedded in an ICO into a standalone BMP.
- Small helpers:
  - `imgrelay.semaphore.Semaphore` hands out `Token`s that can be released more than once without harm.
  - `imgrelay.structdiff.diff` compares two dataclasses field by field.
  - `imgrelay.color.color_from_hex` parses hex colours.
  - `imgrelay.reuseport.listen` opens a listening socket, optionally with `SO_REUSEPORT`.
  - `imgrelay.version.version` returns the version string.

## Install

```
pip install .
```

## Examples

Signing and checking a path:

```python
import base64

from imgrelay.security import signature_for, verify_signature

keys, salts = [b"secret"], [b"secret"]
path = "/rs:fill:300:200/plain/local:///photo.png"
mac = signature_for(path, keys[0], salts[0], 32)
signature = base64.urlsafe_b64encode(mac).rstrip(b"=").decode()

verify_signature(signature, path, keys, salts, 32, [])  # raises SignatureError on mismatch
```

Routing a request:

```python
from imgrelay.router import Request, Response, Router

router = Router(prefix="", write_timeout=10)
router.get("/", lambda req_id, request: Response(200, {"Content-Type": "text/plain"}, b"ok"))

response = router.serve(Request("GET", "/anything", remote_addr="127.0.0.1:5000"))
response.headers["X-Request-ID"]  # the assigned request ID
```

Parsing a colour:

```python
from imgrelay.color import color_from_hex

color_from_hex("f0a")  # Color(r=255, g=0, b=170)
```

## What this package does not do

- It does not resize, convert or otherwise process images. The BMP decoder and encoder and the ICO helpers are the only image codecs it has.
- It does not download images over HTTP or from cloud storage. Only local files are served, through `FileTransport`.
- It provides no HTTP server and no command. `Router.serve` works on `Request` objects, and connecting it to a socket (for example one from `reuseport.listen`) is up to the caller.
- It reads no configuration. Every setting is passed in as a function argument.

## Tests

```
pip install .[test]
pytest
```