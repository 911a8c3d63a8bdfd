"""Tests for the built-in pattern analyzers and the default review vote."""

from __future__ import annotations

import pytest

from cypherscan.scanner.analyzers import (
    ALL_ANALYZERS,
    AccessControlAnalyzer,
    AttackSurfaceAnalyzer,
    DangerousFunctionsAnalyzer,
    DefiRiskAnalyzer,
    DependencyRiskAnalyzer,
    GasEfficiencyAnalyzer,
    MevAnalyzer,
    OracleManipulationAnalyzer,
    ReentrancyAnalyzer,
    StaticCodeAnalyzer,
    TokenomicsAnalyzer,
    UpgradeabilityAnalyzer,
    build_analyzers,
)
from cypherscan.scanner.base import FileArtifact, Severity, VoteDecision
from cypherscan.scanner.grouping import FindingGrouper

from conftest import make_finding

WALLET = FileArtifact(path="src/Wallet.sol", content="""pragma solidity ^0.6.12;

contract Wallet {
    address public owner;

    // msg.sender.call{value: 1}("") in a comment is ignored
    function withdrawAll(address payable to) public {
        require(tx.origin == owner);
        (bool ok, ) = to.call{value: address(this).balance}("");
        require(ok, "send failed");
    }

    function exec(address target, bytes memory data) external {
        target.delegatecall(data);
    }

    function kill() external {
        selfdestruct(payable(owner));
    }

    function initialize(address _owner) public {
        owner = _owner;
    }

    function price() external view returns (uint256) {
        (uint112 r0, uint112 r1, ) = pair.getReserves();
        return r1 * 1e18 / r0 + block.timestamp * 0;
    }

    function sum(uint256[] memory xs) public pure returns (uint256 t) {
        for (uint256 i = 0; i < xs.length; i++) { t += xs[i]; }
    }
}
""")


def _by_rule(findings):
    return {f.finding_id.split("-src/")[0]: f for f in findings}


def test_static_code_flags_call_compiler_and_timestamp():
    findings = StaticCodeAnalyzer().analyze([WALLET])
    rules = _by_rule(findings)

    assert set(rules) >= {"low-level-call", "legacy-compiler", "timestamp-dependence"}
    assert rules["legacy-compiler"].location.line == 1
    assert rules["low-level-call"].location.line == 9
    assert rules["low-level-call"].severity == Severity.HIGH
    assert rules["low-level-call"].analyzer == "static_code"


def test_comment_lines_are_skipped():
    findings = ReentrancyAnalyzer().analyze([WALLET])

    assert [f.location.line for f in findings] == [9]


def test_reentrancy_ignores_plain_calls_and_guarded_lines():
    source = FileArtifact(path="A.sol", content=(
        "x.call(abi.encode(1));\n"
        "function f() external nonReentrant { x.call{value: 1}(\"\"); }\n"
        "x.call{value: 1}(\"\");\n"
    ))
    findings = ReentrancyAnalyzer().analyze([source])

    assert [f.location.line for f in findings] == [3]
    assert findings[0].finding_id == "value-call-A.sol-3"
    assert findings[0].code_snippet == 'x.call{value: 1}("");'


def test_tx_origin_reported_by_two_analyzers_in_the_same_group():
    grouper = FindingGrouper()
    grouper.add_findings(AccessControlAnalyzer().analyze([WALLET]))
    grouper.add_findings(DangerousFunctionsAnalyzer().analyze([WALLET]))

    group = next(g for g in grouper.get_groups() if g.key == "access-control:HIGH")
    assert set(group.reporters) == {"access_control", "dangerous_functions"}


def test_dangerous_functions_find_delegatecall_and_selfdestruct():
    categories = {f.category for f in DangerousFunctionsAnalyzer().analyze([WALLET])}

    assert {"delegatecall", "selfdestruct", "access-control"} <= categories


def test_initializer_modifier_suppresses_finding():
    unsafe = UpgradeabilityAnalyzer().analyze([WALLET])
    safe = UpgradeabilityAnalyzer().analyze([FileArtifact(
        path="P.sol", content="function initialize(address o) public initializer {\n",
    )])

    assert any(f.category == "upgradeability" for f in unsafe)
    assert not any(f.category == "upgradeability" for f in safe)


def test_oracle_spot_price_flagged():
    findings = OracleManipulationAnalyzer().analyze([WALLET])

    assert any(f.category == "oracle-manipulation" and f.severity == Severity.HIGH for f in findings)


def test_gas_efficiency_is_deep_only():
    findings = GasEfficiencyAnalyzer().analyze([WALLET])

    assert GasEfficiencyAnalyzer.deep_only is True
    assert any(f.finding_id.startswith("loop-length") for f in findings)


def test_hits_per_file_are_capped():
    analyzer = DangerousFunctionsAnalyzer()
    analyzer.max_hits_per_file = 3
    source = FileArtifact(path="M.sol", content="x.delegatecall(d);\n" * 10)

    assert len(analyzer.analyze([source])) == 3


def test_default_review_rejects_covered_category_and_abstains_otherwise():
    grouper = FindingGrouper()
    grouper.add_findings([
        make_finding("reentrancy", Severity.HIGH, analyzer="static_code"),
        make_finding("selfdestruct", Severity.HIGH, analyzer="dangerous_functions"),
    ])
    groups = {g.category: g for g in grouper.get_groups()}
    reviewer = ReentrancyAnalyzer()

    decision = reviewer.review(groups["reentrancy"], [WALLET])
    assert decision.decision == VoteDecision.REJECTED
    assert decision.confidence == reviewer.review_confidence
    assert reviewer.review(groups["selfdestruct"], [WALLET]) is None


def test_registry_names_match_analyzer_names():
    for key, cls in ALL_ANALYZERS.items():
        assert cls().name == key


def test_build_analyzers():
    assert len(build_analyzers()) == len(ALL_ANALYZERS)
    assert [a.name for a in build_analyzers(["reentrancy"])] == ["reentrancy"]
    with pytest.raises(KeyError):
        build_analyzers(["nope"])


POOL = FileArtifact(path="src/Pool.sol", content="""pragma solidity ^0.8.20;

import "@openzeppelin/contracts/math/SafeMath.sol";
import "https://github.com/acme/libs/blob/main/Math.sol";

contract Pool {
    function mint(address to, uint256 amount) external {
        _mint(to, amount);
    }

    function mintFor(address to) external onlyOwner {
        _mint(to, 1);
    }

    function rebalance() external {
        token.approve(router, type(uint256).max);
        router.swapExactTokensForTokens(amountIn, 0, path, address(this), block.timestamp);
        uint256 rate = reserve * 1e18 / token.balanceOf(address(this));
    }

    function onFlashLoan(address, address, uint256, uint256, bytes calldata) external returns (bytes32) {
        return keccak256("ERC3156FlashBorrower.onFlashLoan");
    }

    function relay(address target, bytes calldata data) external {
        target.call(data);
    }

    receive() external payable {}
}
""")


def _rules(analyzer):
    return sorted(f.finding_id.split("-src/")[0] for f in analyzer.analyze([POOL]))


def test_mev_flags_zero_slippage_and_now_deadline():
    assert _rules(MevAnalyzer()) == ["now-deadline", "zero-slippage"]


def test_defi_risk_flags_flash_callback_and_balance_price():
    findings = DefiRiskAnalyzer().analyze([POOL])

    assert _rules(DefiRiskAnalyzer()) == ["balance-based-price", "flash-loan-callback"]
    price = next(f for f in findings if f.category == "oracle-manipulation")
    assert price.severity == Severity.HIGH
    assert price.location.line == 18


def test_tokenomics_skips_guarded_mint():
    findings = TokenomicsAnalyzer().analyze([POOL])

    mints = [f for f in findings if f.category == "token-supply"]
    assert [f.location.line for f in mints] == [7]
    assert any(f.category == "token-approval" for f in findings)


def test_attack_surface_flags_arbitrary_call_and_payable_receive():
    assert _rules(AttackSurfaceAnalyzer()) == ["arbitrary-call", "payable-fallback"]


def test_dependency_risk_flags_imports_and_pragma():
    findings = DependencyRiskAnalyzer().analyze([POOL])

    assert _rules(DependencyRiskAnalyzer()) == ["floating-pragma", "legacy-openzeppelin", "remote-import"]
    remote = next(f for f in findings if f.finding_id.startswith("remote-import"))
    assert remote.severity == Severity.HIGH
