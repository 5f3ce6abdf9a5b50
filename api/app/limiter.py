"""
Rate Limiter Singleton

slowapi Limiter をここで一度だけ生成し、main.py とルートファイルから import する。
アプリ側のモジュールに依存しない（循環インポート防止）。

- 既定: 全エンドポイント 100回/分（SlowAPIMiddleware 経由）
- ログイン・登録・パスワード変更: v1/auth.py で 10回/分
- ヘルスチェック: @limiter.exempt で対象外

Cloud Run では Google Front End が実クライアント IP を X-Forwarded-For の末尾に
追記するため、request.client.host（ロードバランサの IP）ではなく末尾エントリをキーにする。
"""
from fastapi import Request
from slowapi import Limiter

DEFAULT_RATE_LIMIT = "100/minute"
AUTH_RATE_LIMIT = "10/minute"


def client_ip_key(request: Request) -> str:
    """レート制限キー（X-Forwarded-For 末尾 → 接続元 → ループバック）"""
    forwarded_for = request.headers.get("X-Forwarded-For", "")
    if forwarded_for:
        return forwarded_for.split(",")[-1].strip()
    if request.client and request.client.host:
        return request.client.host
    return "127.0.0.1"


limiter = Limiter(key_func=client_ip_key, default_limits=[DEFAULT_RATE_LIMIT])
