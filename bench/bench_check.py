import argparse
import statistics
import time

from relcheck import AuthorizationService, ServiceConfig, parse_model

MODEL = {
    "type_definitions": [
        {"type": "user"},
        {
            "type": "group",
            "relations": {"member": {"this": {}}},
            "metadata": {
                "relations": {
                    "member": {
                        "directly_related_user_types": [
                            {"type": "user"},
                            {"type": "group", "relation": "member"},
                        ]
                    }
                }
            },
        },
        {
            "type": "doc",
            "relations": {"viewer": {"this": {}}},
            "metadata": {
                "relations": {
                    "viewer": {"directly_related_user_types": [{"type": "group", "relation": "member"}]}
                }
            },
        },
    ]
}


def build(depth: int, fanout: int):
    """doc:1 is viewable by group g0; g0 <- g1 <- ... <- g{depth}; each group has *fanout* users."""
    svc = AuthorizationService(config=ServiceConfig(max_depth=depth + 5))
    sid = svc.create_store("bench").id
    mid = svc.write_model(sid, parse_model(MODEL))
    keys = [{"user": "group:g0#member", "relation": "viewer", "object": "doc:1"}]
    for i in range(depth):
        keys.append({"user": f"group:g{i + 1}#member", "relation": "member", "object": f"group:g{i}"})
    for i in range(depth + 1):
        keys.extend(
            {"user": f"user:g{i}-{j}", "relation": "member", "object": f"group:g{i}"}
            for j in range(fanout)
        )
    for i in range(0, len(keys), 100):
        svc.write_tuples(sid, keys[i : i + 100])
    return svc, sid, mid


def run(depth: int, fanout: int, iters: int):
    svc, sid, mid = build(depth, fanout)
    user = f"user:g{depth}-{fanout - 1}"  # deepest, last member
    lat = []
    for _ in range(iters):
        t0 = time.perf_counter()
        res = svc.check(sid, mid, user, "viewer", "doc:1")
        lat.append((time.perf_counter() - t0) * 1000.0)
    return {
        "p50": statistics.median(lat),
        "avg": sum(lat) / len(lat),
        "p90": percentile(lat, 90),
        "allowed": res.allowed,
    }


def percentile(arr, p):
    arr2 = sorted(arr)
    k = int(round((p / 100.0) * (len(arr2) - 1)))
    return arr2[k]


def main():
    ap = argparse.ArgumentParser()
    ap.add_argument("--depths", type=int, nargs="+", default=[1, 5, 10, 20])
    ap.add_argument("--fanout", type=int, default=50)
    ap.add_argument("--iters", type=int, default=200)
    args = ap.parse_args()
    print("depth,avg_ms,p50_ms,p90_ms,allowed")
    for d in args.depths:
        r = run(d, args.fanout, args.iters)
        print(f"{d},{r['avg']:.3f},{r['p50']:.3f},{r['p90']:.3f},{r['allowed']}")


if __name__ == "__main__":
    main()
